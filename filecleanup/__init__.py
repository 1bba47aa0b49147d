"""
FileCleanup - keeps watched folders within age and size limits.

The daemon indexes each configured folder, follows new files as they are
created, and periodically deletes files that are too old or that push a folder
over its size limit (absolute, or a percentage of the drive).
"""

from .capacity_probe import CapacityProbe, PsutilCapacityProbe, select_capacity_probe
from .file_index import FileIndex
from .file_watcher import FileWatcher
from .retention_cleanup import RetentionCleanup
from .retention_config import CleanupConfig, RetentionConfigManager, TargetConfig
from .retention_manager import RetentionManager, create_retention_manager
from .retention_models import (
    CleanupOperation,
    CleanupPolicy,
    ConfigError,
    FileCleanupError,
    FileRecord,
    PopulationError,
    UnsupportedPlatformError,
    WatchSubscriptionError,
)
from .retention_scheduler import RetentionScheduler

__version__ = "1.0.0"

__all__ = [
    'CapacityProbe',
    'PsutilCapacityProbe',
    'select_capacity_probe',
    'FileIndex',
    'FileWatcher',
    'RetentionCleanup',
    'CleanupConfig',
    'RetentionConfigManager',
    'TargetConfig',
    'RetentionManager',
    'create_retention_manager',
    'CleanupOperation',
    'CleanupPolicy',
    'ConfigError',
    'FileCleanupError',
    'FileRecord',
    'PopulationError',
    'UnsupportedPlatformError',
    'WatchSubscriptionError',
    'RetentionScheduler',
]

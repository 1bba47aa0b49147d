"""
Data models for the file cleanup system.

This module contains the data classes and error types shared by the index,
the enforcers and the scheduler.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

SECONDS_PER_DAY = 24 * 60 * 60


class CleanupPolicy(Enum):
    """The two enforcement policies applied to every target."""
    RETENTION = "retention"
    QUOTA = "quota"


@dataclass
class FileRecord:
    """Last-known metadata of one tracked file."""
    size: int
    modified_at: float


@dataclass
class CleanupOperation:
    """Result of a single enforcement pass over one target."""
    operation_id: str
    timestamp: datetime
    target: str
    policy: CleanupPolicy
    files_processed: int
    files_deleted: int
    storage_freed_bytes: int
    remaining_size_mb: int
    status: str  # 'success', 'partial', 'skipped', 'failed'
    duration_seconds: float
    deletion_errors: int = 0
    error_message: Optional[str] = None


@dataclass
class SchedulerStatus:
    """Status information for the scheduler."""
    running: bool
    targets: int
    total_passes: int
    successful_passes: int
    failed_passes: int
    skipped_passes: int
    last_pass: Optional[datetime]
    last_error: Optional[str]
    uptime_seconds: float


class FileCleanupError(Exception):
    """Base class for errors that stop the cleanup engine."""


class ConfigError(FileCleanupError):
    """The configuration file is missing required data or is malformed."""


class PopulationError(FileCleanupError):
    """The initial scan of a target directory could not complete."""


class WatchSubscriptionError(FileCleanupError):
    """A filesystem watch could not be registered."""


class UnsupportedPlatformError(FileCleanupError):
    """No capacity probe exists for the host platform."""

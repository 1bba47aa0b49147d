"""
Main retention manager - orchestrates the file cleanup system.

This is the main entry point that owns the per-target indices, the file
watcher and the scheduler, and runs the startup and shutdown sequence.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import structlog
from watchdog.observers import Observer

from .capacity_probe import CapacityProbe, select_capacity_probe
from .file_index import FileIndex, link_overlapping
from .file_watcher import FileWatcher
from .retention_cleanup import RetentionCleanup
from .retention_config import CleanupConfig, RetentionConfigManager
from .retention_models import CleanupOperation
from .retention_monitoring import RetentionMetrics
from .retention_scheduler import RetentionScheduler

logger = structlog.get_logger(__name__)


class RetentionManager:
    """
    Main retention manager that orchestrates all cleanup operations.

    Startup order: index every target, start watching for new files, then
    start the enforcement timers. A failure in the first two steps is fatal.
    """

    def __init__(self, config: CleanupConfig, capacity_probe: Optional[CapacityProbe] = None,
                 metrics: Optional[RetentionMetrics] = None,
                 observer_factory: Callable[[], Observer] = Observer):
        self.config = config

        # Percentage mode cannot run without a probe, so fail before anything starts
        if capacity_probe is None and config.uses_percent_mode:
            capacity_probe = select_capacity_probe()
        self.capacity_probe = capacity_probe

        self.metrics = metrics or RetentionMetrics()
        self.indices = [FileIndex(target.path, config.detailed_log) for target in config.targets]
        link_overlapping(self.indices)
        self.cleanup = RetentionCleanup(capacity_probe, config.detailed_log)
        self.watcher = FileWatcher(self.indices, config.detailed_log, observer_factory)
        self.scheduler = RetentionScheduler(
            list(zip(config.targets, self.indices)),
            self.cleanup,
            self.metrics,
            skip_overlapping_runs=config.skip_overlapping_runs,
        )

    def populate(self) -> int:
        """
        Build every target index from disk.

        Raises:
            PopulationError: a target could not be scanned.
        """
        total = 0
        for index in self.indices:
            total += index.populate()
            self.metrics.update_index(index)
        return total

    async def start(self):
        """Index all targets, start the watcher and the scheduler."""
        logger.info("Initiating FileCleanup", targets=len(self.indices))
        await asyncio.to_thread(self.populate)
        await self.watcher.start()
        await self.scheduler.start()

    async def stop(self):
        """Stop the scheduler (waiting for running passes) and the watcher."""
        await self.scheduler.stop()
        await self.watcher.stop()

    async def run_forever(self, stop_event: asyncio.Event):
        """Run until ``stop_event`` is set."""
        await self.start()
        try:
            await stop_event.wait()
        finally:
            await self.stop()

    async def run_cleanup(self, target_path: Optional[str] = None) -> List[CleanupOperation]:
        """Run both passes immediately for one or all targets."""
        return await self.scheduler.run_manual_cleanup(target_path)

    def get_retention_status(self) -> Dict[str, Any]:
        """Get current status of every target and of the scheduler."""
        status = self.scheduler.get_status()
        return {
            'targets': [
                {
                    'path': target.path,
                    'tracked_files': len(index),
                    'tracked_size_mb': index.total_size_mb(),
                    'retention_days': target.retention_days,
                    'size_limit': target.size_limit,
                    'size_unit': target.size_unit,
                    'percent_relative_to_available': target.percent_relative_to_available,
                }
                for target, index in zip(self.config.targets, self.indices)
            ],
            'scheduler': {
                'running': status.running,
                'total_passes': status.total_passes,
                'successful_passes': status.successful_passes,
                'failed_passes': status.failed_passes,
                'skipped_passes': status.skipped_passes,
                'last_pass': status.last_pass.isoformat() if status.last_pass else None,
                'last_error': status.last_error,
            },
        }


def create_retention_manager(config_path: Optional[str] = None) -> RetentionManager:
    """Create a new RetentionManager from a configuration file."""
    return RetentionManager(RetentionConfigManager(config_path).config)

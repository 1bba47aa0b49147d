"""
Retention Scheduler for the file cleanup system.

Every target gets two independent periodic timers: one for the retention pass
and one for the quota pass. Each firing runs as its own task and the pass
itself runs in a worker thread, so a slow pass never holds up other targets,
the other policy, or the file watcher.
"""

import asyncio
import os
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple

import structlog

from .file_index import FileIndex
from .retention_cleanup import RetentionCleanup, make_operation_id
from .retention_config import TargetConfig
from .retention_models import CleanupOperation, CleanupPolicy, SchedulerStatus
from .retention_monitoring import RetentionMetrics

logger = structlog.get_logger(__name__)


class RetentionScheduler:
    """
    Periodic scheduler for retention and quota passes.

    With ``skip_overlapping_runs`` a firing is dropped while the previous pass
    of the same target and policy is still running. Without it, passes queue
    behind the index lock.
    """

    def __init__(self, targets: List[Tuple[TargetConfig, FileIndex]], cleanup: RetentionCleanup,
                 metrics: Optional[RetentionMetrics] = None, skip_overlapping_runs: bool = True):
        self.targets = targets
        self.cleanup = cleanup
        self.metrics = metrics
        self.skip_overlapping_runs = skip_overlapping_runs

        self._running = False
        self._timers: List[asyncio.Task] = []
        self._in_flight: Dict[Tuple[str, CleanupPolicy], asyncio.Task] = {}
        self._pass_tasks: Set[asyncio.Task] = set()
        self._start_time: Optional[datetime] = None
        self._last_pass: Optional[datetime] = None
        self._total_passes = 0
        self._successful_passes = 0
        self._failed_passes = 0
        self._skipped_passes = 0
        self._last_error: Optional[str] = None

    async def start(self):
        """Start the timers of every target."""
        if self._running:
            logger.warning("Retention scheduler is already running")
            return

        self._running = True
        self._start_time = datetime.now()

        for target, index in self.targets:
            self._timers.append(asyncio.create_task(
                self._timer_loop(target, index, CleanupPolicy.RETENTION, target.retention_check_interval_seconds)))
            self._timers.append(asyncio.create_task(
                self._timer_loop(target, index, CleanupPolicy.QUOTA, target.size_check_interval_seconds)))

        logger.info("Retention scheduler started", targets=len(self.targets),
                    skip_overlapping_runs=self.skip_overlapping_runs)

    async def stop(self):
        """Stop the timers and wait for passes already in progress."""
        if not self._running:
            return

        logger.info("Stopping retention scheduler...")
        self._running = False

        for timer in self._timers:
            timer.cancel()
        await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []

        if self._pass_tasks:
            await asyncio.gather(*self._pass_tasks, return_exceptions=True)

        logger.info("Retention scheduler stopped")

    async def _timer_loop(self, target: TargetConfig, index: FileIndex, policy: CleanupPolicy, interval: int):
        while True:
            await asyncio.sleep(interval)
            self.dispatch(target, index, policy)

    def dispatch(self, target: TargetConfig, index: FileIndex, policy: CleanupPolicy) -> Optional[asyncio.Task]:
        """
        Launch one pass as a separate task.

        Returns:
            The pass task, or None if the firing was skipped.
        """
        key = (target.path, policy)
        previous = self._in_flight.get(key)
        if self.skip_overlapping_runs and previous is not None and not previous.done():
            logger.warning("Previous pass still running, skipping", target=target.path, policy=policy.value)
            self._record(self._skipped_operation(target, policy))
            return None

        task = asyncio.create_task(self._run_pass(target, index, policy))
        self._in_flight[key] = task
        self._pass_tasks.add(task)
        task.add_done_callback(self._pass_tasks.discard)
        return task

    async def _run_pass(self, target: TargetConfig, index: FileIndex,
                        policy: CleanupPolicy) -> Optional[CleanupOperation]:
        if policy is CleanupPolicy.RETENTION:
            run = self.cleanup.delete_old_files
        else:
            run = self.cleanup.delete_excess_files

        try:
            operation = await asyncio.to_thread(run, index, target)
        except Exception as e:
            logger.error("Cleanup pass failed", target=target.path, policy=policy.value, error=str(e))
            self._total_passes += 1
            self._failed_passes += 1
            self._last_error = str(e)
            return None

        self._record(operation)
        if self.metrics is not None:
            self.metrics.update_index(index)
        return operation

    def _skipped_operation(self, target: TargetConfig, policy: CleanupPolicy) -> CleanupOperation:
        return CleanupOperation(
            operation_id=make_operation_id(target.path, policy),
            timestamp=datetime.now(),
            target=target.path,
            policy=policy,
            files_processed=0,
            files_deleted=0,
            storage_freed_bytes=0,
            remaining_size_mb=0,
            status='skipped',
            duration_seconds=0.0,
        )

    def _record(self, operation: CleanupOperation):
        self._total_passes += 1
        if operation.status == 'skipped':
            self._skipped_passes += 1
        elif operation.status == 'success':
            self._successful_passes += 1
            self._last_pass = operation.timestamp
        else:
            self._failed_passes += 1
            self._last_pass = operation.timestamp
            self._last_error = operation.error_message

        if self.metrics is not None:
            self.metrics.record_operation(operation)

    async def run_manual_cleanup(self, target_path: Optional[str] = None) -> List[CleanupOperation]:
        """Run the retention then the quota pass right away for one or all targets."""
        operations = []
        for target, index in self.targets:
            if target_path is not None and target.path != os.path.abspath(target_path):
                continue
            for policy in (CleanupPolicy.RETENTION, CleanupPolicy.QUOTA):
                operation = await self._run_pass(target, index, policy)
                if operation is not None:
                    operations.append(operation)
        return operations

    def get_status(self) -> SchedulerStatus:
        """Get current scheduler status."""
        uptime = 0.0
        if self._start_time and self._running:
            uptime = (datetime.now() - self._start_time).total_seconds()

        return SchedulerStatus(
            running=self._running,
            targets=len(self.targets),
            total_passes=self._total_passes,
            successful_passes=self._successful_passes,
            failed_passes=self._failed_passes,
            skipped_passes=self._skipped_passes,
            last_pass=self._last_pass,
            last_error=self._last_error,
            uptime_seconds=uptime,
        )

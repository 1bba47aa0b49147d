"""
Unit tests for the retention scheduler.
"""

import asyncio
import threading
from datetime import datetime

import pytest

from filecleanup.file_index import FileIndex
from filecleanup.retention_config import TargetConfig
from filecleanup.retention_models import CleanupOperation, CleanupPolicy
from filecleanup.retention_monitoring import RetentionMetrics
from filecleanup.retention_scheduler import RetentionScheduler


def _operation(target, policy, status='success'):
    return CleanupOperation(
        operation_id=f"{policy.value}_test",
        timestamp=datetime.now(),
        target=target.path,
        policy=policy,
        files_processed=0,
        files_deleted=0,
        storage_freed_bytes=0,
        remaining_size_mb=0,
        status=status,
        duration_seconds=0.0,
    )


class FakeCleanup:
    """Stands in for RetentionCleanup and records which passes ran."""

    def __init__(self):
        self.calls = []
        self.release = threading.Event()
        self.release.set()
        self.fail_quota = False

    def delete_old_files(self, index, target):
        self.calls.append((target.path, CleanupPolicy.RETENTION))
        self.release.wait(5)
        return _operation(target, CleanupPolicy.RETENTION)

    def delete_excess_files(self, index, target):
        self.calls.append((target.path, CleanupPolicy.QUOTA))
        if self.fail_quota:
            raise RuntimeError("disk on fire")
        return _operation(target, CleanupPolicy.QUOTA)


def _targets(*paths, interval=3600):
    return [
        (TargetConfig(path=path, retention_check_interval_seconds=interval,
                      size_check_interval_seconds=interval), FileIndex(path))
        for path in paths
    ]


class TestRetentionScheduler:
    """Test timers, dispatch and manual runs."""

    @pytest.mark.asyncio
    async def test_start_creates_two_timers_per_target(self):
        scheduler = RetentionScheduler(_targets('/srv/a', '/srv/b'), FakeCleanup())

        await scheduler.start()
        try:
            assert len(scheduler._timers) == 4
            assert scheduler.get_status().running
        finally:
            await scheduler.stop()

        assert not scheduler.get_status().running
        assert scheduler._timers == []

    @pytest.mark.asyncio
    async def test_start_when_already_running(self):
        scheduler = RetentionScheduler(_targets('/srv/a'), FakeCleanup())

        await scheduler.start()
        await scheduler.start()
        try:
            assert len(scheduler._timers) == 2
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self):
        scheduler = RetentionScheduler(_targets('/srv/a'), FakeCleanup())

        await scheduler.stop()

        assert not scheduler.get_status().running

    @pytest.mark.asyncio
    async def test_timers_fire_both_policies(self):
        cleanup = FakeCleanup()
        scheduler = RetentionScheduler(_targets('/srv/a', interval=1), cleanup)

        await scheduler.start()
        try:
            for _ in range(50):
                if len(cleanup.calls) >= 2:
                    break
                await asyncio.sleep(0.1)
        finally:
            await scheduler.stop()

        assert ('/srv/a', CleanupPolicy.RETENTION) in cleanup.calls
        assert ('/srv/a', CleanupPolicy.QUOTA) in cleanup.calls

    @pytest.mark.asyncio
    async def test_overlapping_firing_is_skipped(self):
        cleanup = FakeCleanup()
        cleanup.release.clear()
        targets = _targets('/srv/a')
        target, index = targets[0]
        scheduler = RetentionScheduler(targets, cleanup, skip_overlapping_runs=True)

        first = scheduler.dispatch(target, index, CleanupPolicy.RETENTION)
        await asyncio.sleep(0.05)
        second = scheduler.dispatch(target, index, CleanupPolicy.RETENTION)
        cleanup.release.set()
        await first

        assert second is None
        assert cleanup.calls.count(('/srv/a', CleanupPolicy.RETENTION)) == 1
        status = scheduler.get_status()
        assert status.skipped_passes == 1
        assert status.successful_passes == 1

    @pytest.mark.asyncio
    async def test_other_policy_is_not_blocked(self):
        cleanup = FakeCleanup()
        cleanup.release.clear()
        targets = _targets('/srv/a')
        target, index = targets[0]
        scheduler = RetentionScheduler(targets, cleanup)

        slow = scheduler.dispatch(target, index, CleanupPolicy.RETENTION)
        quota = scheduler.dispatch(target, index, CleanupPolicy.QUOTA)

        assert quota is not None
        operation = await quota
        assert operation.policy is CleanupPolicy.QUOTA
        cleanup.release.set()
        await slow

    @pytest.mark.asyncio
    async def test_overlap_allowed_when_skipping_disabled(self):
        cleanup = FakeCleanup()
        cleanup.release.clear()
        targets = _targets('/srv/a')
        target, index = targets[0]
        scheduler = RetentionScheduler(targets, cleanup, skip_overlapping_runs=False)

        first = scheduler.dispatch(target, index, CleanupPolicy.RETENTION)
        await asyncio.sleep(0.05)
        second = scheduler.dispatch(target, index, CleanupPolicy.RETENTION)
        cleanup.release.set()
        await asyncio.gather(first, second)

        assert second is not None
        assert cleanup.calls.count(('/srv/a', CleanupPolicy.RETENTION)) == 2
        assert scheduler.get_status().skipped_passes == 0

    @pytest.mark.asyncio
    async def test_manual_cleanup_runs_retention_then_quota(self):
        cleanup = FakeCleanup()
        scheduler = RetentionScheduler(_targets('/srv/a', '/srv/b'), cleanup)

        operations = await scheduler.run_manual_cleanup()

        assert [op.policy for op in operations] == [
            CleanupPolicy.RETENTION, CleanupPolicy.QUOTA,
            CleanupPolicy.RETENTION, CleanupPolicy.QUOTA,
        ]
        assert scheduler.get_status().total_passes == 4

    @pytest.mark.asyncio
    async def test_manual_cleanup_single_target(self):
        cleanup = FakeCleanup()
        scheduler = RetentionScheduler(_targets('/srv/a', '/srv/b'), cleanup)

        operations = await scheduler.run_manual_cleanup('/srv/b')

        assert {op.target for op in operations} == {'/srv/b'}
        assert len(operations) == 2

    @pytest.mark.asyncio
    async def test_pass_exception_counts_as_failure(self):
        cleanup = FakeCleanup()
        cleanup.fail_quota = True
        scheduler = RetentionScheduler(_targets('/srv/a'), cleanup)

        operations = await scheduler.run_manual_cleanup()

        assert len(operations) == 1
        status = scheduler.get_status()
        assert status.failed_passes == 1
        assert status.successful_passes == 1
        assert status.last_error == "disk on fire"

    @pytest.mark.asyncio
    async def test_passes_are_recorded_in_metrics(self):
        metrics = RetentionMetrics()
        scheduler = RetentionScheduler(_targets('/srv/a'), FakeCleanup(), metrics)

        await scheduler.run_manual_cleanup()

        value = metrics.registry.get_sample_value(
            'filecleanup_passes_total',
            {'target': '/srv/a', 'policy': 'quota', 'status': 'success'})
        assert value == 1.0
        assert metrics.registry.get_sample_value('filecleanup_tracked_files', {'target': '/srv/a'}) == 0.0

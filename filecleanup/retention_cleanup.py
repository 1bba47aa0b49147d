"""
Core cleanup logic for the file cleanup system.

This module enforces the two per-target policies against a FileIndex:

- retention: delete every file older than ``retention_days``
- quota: delete the oldest files until the aggregate size is within bounds

Both passes hold the index lock for their whole run and keep the index in
step with every file they remove.
"""

import heapq
import math
import os
import time
from datetime import datetime
from fractions import Fraction
from typing import Optional, Tuple

import structlog

from .capacity_probe import CapacityProbe
from .file_index import FileIndex
from .retention_config import TargetConfig
from .retention_models import MB, SECONDS_PER_DAY, CleanupOperation, CleanupPolicy

logger = structlog.get_logger(__name__)


def estimate_files_to_delete(excess_mb: Fraction, total_bytes: int, file_count: int) -> int:
    """
    Estimate how many average-sized files must go to shed ``excess_mb``.

    The average is taken over all tracked files, so the estimate can over- or
    undershoot when file sizes vary widely. An empty index yields zero.
    """
    if file_count == 0 or total_bytes == 0 or excess_mb <= 0:
        return 0
    average_file_size_mb = Fraction(total_bytes, file_count * MB)
    # Rounded up rather than truncated, so an over-limit target always loses at least one file
    return math.ceil(excess_mb / average_file_size_mb)


def folder_size_percent(total_bytes: int, base_bytes: int) -> int:
    """Tracked size as a whole percentage of ``base_bytes``, rounded down."""
    return total_bytes * 100 // base_bytes


def make_operation_id(target_path: str, policy: CleanupPolicy) -> str:
    name = os.path.basename(target_path.rstrip(os.sep)) or 'root'
    return f"{policy.value}_{name}_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}"


class RetentionCleanup:
    """Runs retention and quota passes over target indices."""

    def __init__(self, capacity_probe: Optional[CapacityProbe] = None, detailed_log: bool = False):
        self.capacity_probe = capacity_probe
        self.detailed_log = detailed_log

    def _delete_file(self, index: FileIndex, path: str) -> bool:
        """Delete one file and drop it from the index. Returns False on failure."""
        try:
            os.remove(path)
        except FileNotFoundError as e:
            # Already gone from disk, so it must not keep counting toward the target
            index.forget(path)
            logger.error("Error deleting file", path=path, error=str(e))
            return False
        except OSError as e:
            logger.error("Error deleting file", path=path, error=str(e))
            return False

        index.forget(path)
        if self.detailed_log:
            logger.debug("Deleted", path=path)
        return True

    def delete_old_files(self, index: FileIndex, target: TargetConfig,
                         now: Optional[float] = None) -> CleanupOperation:
        """
        Delete every indexed file whose age exceeds ``target.retention_days``.

        A failed deletion is logged and the pass moves on to the next candidate.

        Args:
            index: Index of the target's files.
            target: Target configuration.
            now: POSIX timestamp to measure ages against. Defaults to the current time.

        Returns:
            The operation record for this pass.
        """
        operation_id = make_operation_id(target.path, CleanupPolicy.RETENTION)
        timestamp = datetime.now()
        started = time.monotonic()
        now = time.time() if now is None else now

        deleted = 0
        errors = 0
        freed = 0

        with index.locked():
            logger.info("Started processing deletion of old files", target=target.path,
                        retention_days=target.retention_days)
            entries = index.items()
            if not entries:
                logger.info("No files to delete", target=target.path)

            for path, record in entries:
                age_days = (now - record.modified_at) / SECONDS_PER_DAY
                if age_days <= target.retention_days:
                    continue
                if self._delete_file(index, path):
                    deleted += 1
                    freed += record.size
                else:
                    errors += 1

            remaining_mb = index.total_size_mb()

        if errors and deleted:
            status = 'partial'
        elif errors:
            status = 'failed'
        else:
            status = 'success'

        logger.info("Retention pass completed", target=target.path, files_deleted=deleted,
                    deletion_errors=errors, remaining_size_mb=remaining_mb)

        return CleanupOperation(
            operation_id=operation_id,
            timestamp=timestamp,
            target=target.path,
            policy=CleanupPolicy.RETENTION,
            files_processed=len(entries),
            files_deleted=deleted,
            storage_freed_bytes=freed,
            remaining_size_mb=remaining_mb,
            status=status,
            duration_seconds=time.monotonic() - started,
            deletion_errors=errors,
            error_message=f"{errors} files could not be deleted" if errors else None,
        )

    def _measure(self, target: TargetConfig, total_bytes: int) -> Tuple[int, Fraction, int]:
        """
        Measure the target against its size bound.

        Returns:
            ``(folder_size, excess_mb, base_bytes)`` where ``folder_size`` is in
            the target's unit (MB or percent) and ``base_bytes`` is 0 in absolute mode.
        """
        if not target.percent_mode_enabled:
            folder_size = total_bytes // MB
            logger.info("Folder size measured", target=target.path, folder_size_mb=folder_size,
                        max_size_mb=target.max_size_mb)
            return folder_size, Fraction(folder_size - target.max_size_mb), 0

        if self.capacity_probe is None:
            raise RuntimeError("Percentage mode requires a capacity probe")

        total_drive, available = self.capacity_probe.get_capacity(target.path)
        base_bytes = available if target.percent_relative_to_available else total_drive
        logger.info("Drive capacity", target=target.path, folder_size_mb=total_bytes // MB,
                    available_mb=available // MB, total_mb=total_drive // MB)
        if base_bytes <= 0:
            raise ValueError(f"Drive reports no {'available' if target.percent_relative_to_available else 'total'} capacity")

        percent = folder_size_percent(total_bytes, base_bytes)
        logger.info("Folder size measured", target=target.path, folder_size_percent=percent,
                    max_size_percent=target.max_size_percent)
        excess_mb = Fraction((base_bytes // MB) * (percent - target.max_size_percent), 100)
        return percent, excess_mb, base_bytes

    def _within_limit(self, target: TargetConfig, remaining_bytes: int, base_bytes: int) -> bool:
        if target.percent_mode_enabled:
            return folder_size_percent(remaining_bytes, base_bytes) <= target.max_size_percent
        return remaining_bytes // MB <= target.max_size_mb

    def delete_excess_files(self, index: FileIndex, target: TargetConfig) -> CleanupOperation:
        """
        Delete the oldest indexed files while the target exceeds its size bound.

        The number of deletions is estimated from the average file size. The
        pass stops at the first failed deletion.

        Returns:
            The operation record for this pass.
        """
        operation_id = make_operation_id(target.path, CleanupPolicy.QUOTA)
        timestamp = datetime.now()
        started = time.monotonic()

        deleted = 0
        errors = 0
        freed = 0
        error_message = None

        with index.locked():
            logger.info("Started processing deletion of excess files", target=target.path)
            entries = index.items()
            total_bytes = sum(record.size for _, record in entries)

            try:
                folder_size, excess_mb, base_bytes = self._measure(target, total_bytes)
            except (OSError, ValueError, RuntimeError) as e:
                logger.error("Failed to measure folder size", target=target.path, error=str(e))
                return CleanupOperation(
                    operation_id=operation_id,
                    timestamp=timestamp,
                    target=target.path,
                    policy=CleanupPolicy.QUOTA,
                    files_processed=len(entries),
                    files_deleted=0,
                    storage_freed_bytes=0,
                    remaining_size_mb=total_bytes // MB,
                    status='failed',
                    duration_seconds=time.monotonic() - started,
                    error_message=str(e),
                )

            if folder_size > target.size_limit:
                to_delete = estimate_files_to_delete(excess_mb, total_bytes, len(entries))
                logger.info("Deleting excess files", target=target.path, files_to_delete=to_delete)

                # Ties on modification time resolve to the first entry encountered
                heap = [(record.modified_at, order, path, record.size)
                        for order, (path, record) in enumerate(entries)]
                heapq.heapify(heap)

                while deleted < to_delete and heap:
                    if target.stop_at_limit and self._within_limit(target, total_bytes - freed, base_bytes):
                        break
                    _, _, path, size = heapq.heappop(heap)
                    if not self._delete_file(index, path):
                        errors += 1
                        error_message = f"Stopped after failing to delete {path}"
                        break
                    deleted += 1
                    freed += size

            remaining_mb = index.total_size_mb()

        if errors:
            status = 'partial' if deleted else 'failed'
        else:
            status = 'success'

        logger.info("Quota pass completed", target=target.path, files_deleted=deleted,
                    remaining_size_mb=remaining_mb)

        return CleanupOperation(
            operation_id=operation_id,
            timestamp=timestamp,
            target=target.path,
            policy=CleanupPolicy.QUOTA,
            files_processed=len(entries),
            files_deleted=deleted,
            storage_freed_bytes=freed,
            remaining_size_mb=remaining_mb,
            status=status,
            duration_seconds=time.monotonic() - started,
            deletion_errors=errors,
            error_message=error_message,
        )

"""
In-memory index of the files tracked under one target directory.

The index maps absolute paths to their last-known size and modification time.
Every read and write goes through the index lock; enforcement passes hold it
for their whole duration via ``locked()``.
"""

import os
import stat
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import structlog

from .retention_models import MB, FileRecord, PopulationError

logger = structlog.get_logger(__name__)


def is_within(root: str, path: str) -> bool:
    """Return True if ``path`` is ``root`` or lies below it."""
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        # Different drives, or a relative path mixed with an absolute one
        return False


class FileIndex:
    """Tracked files of a single target, keyed by absolute path."""

    def __init__(self, root: str, detailed_log: bool = False):
        self.root = os.path.abspath(root)
        self.detailed_log = detailed_log
        self._files: Dict[str, FileRecord] = {}
        self._lock = threading.RLock()
        self._linked: List['FileIndex'] = []

    @property
    def linked(self) -> List['FileIndex']:
        """Other indices whose roots overlap this one."""
        return list(self._linked)

    @contextmanager
    def locked(self) -> Iterator['FileIndex']:
        """Hold the index lock for a multi-step operation."""
        with self._lock:
            yield self

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._files

    def get(self, path: str) -> Optional[FileRecord]:
        with self._lock:
            return self._files.get(path)

    def items(self) -> List[Tuple[str, FileRecord]]:
        """Snapshot of the tracked entries."""
        with self._lock:
            return list(self._files.items())

    def covers(self, path: str) -> bool:
        return is_within(self.root, path)

    def upsert(self, path: str, record: FileRecord):
        with self._lock:
            self._files[path] = record

    def remove(self, path: str) -> Optional[FileRecord]:
        with self._lock:
            return self._files.pop(path, None)

    def forget(self, path: str) -> Optional[FileRecord]:
        """Drop a path that no longer exists from this index and every linked one."""
        with self._lock:
            for other in self._linked:
                other.remove(path)
            return self.remove(path)

    def upsert_from_stat(self, path: str) -> Optional[FileRecord]:
        """
        Stat ``path`` and record it if it is a regular file.

        Returns the stored record, or None when the path is not a regular file.
        OSError from the stat call propagates to the caller.
        """
        st = os.stat(path, follow_symlinks=False)
        if not stat.S_ISREG(st.st_mode):
            return None

        record = FileRecord(size=st.st_size, modified_at=st.st_mtime)
        self.upsert(path, record)
        if self.detailed_log:
            logger.debug("File added to index", path=path, size=record.size)
        return record

    def total_size_bytes(self) -> int:
        with self._lock:
            return sum(record.size for record in self._files.values())

    def total_size_mb(self) -> int:
        """Aggregate tracked size in whole megabytes."""
        return self.total_size_bytes() // MB

    def populate(self) -> int:
        """
        Recursively scan the target directory and record every regular file.

        A missing directory is not an error: a warning is logged and nothing is
        added. Any other traversal failure raises PopulationError.

        Returns:
            Number of files added to the index.
        """
        if not os.path.exists(self.root):
            logger.warning("Target folder does not exist", target=self.root)
            return 0
        if not os.path.isdir(self.root):
            raise PopulationError(f"Target is not a directory: {self.root}")

        if self.detailed_log:
            logger.debug("Populating files to watch", target=self.root)

        def _raise(error: OSError):
            raise PopulationError(f"Error scanning {self.root}: {error}") from error

        added = 0
        with self._lock:
            for dirpath, _dirnames, filenames in os.walk(self.root, onerror=_raise, followlinks=False):
                for name in filenames:
                    path = os.path.join(dirpath, name)
                    try:
                        if self.upsert_from_stat(path) is not None:
                            added += 1
                    except FileNotFoundError:
                        # Removed between listing and stat
                        continue
                    except OSError as e:
                        raise PopulationError(f"Error reading {path}: {e}") from e

        logger.info("Target folder indexed", target=self.root, files=added,
                    size_mb=self.total_size_mb())
        return added


def link_overlapping(indices: List[FileIndex]) -> int:
    """
    Group indices whose roots are nested in one another.

    Every index of a group shares one lock, so passes over overlapping targets
    never run at the same time, and deletions made through one index are
    dropped from the others. Must run before the indices are used.

    Returns:
        Number of groups with more than one index.
    """
    groups: List[List[FileIndex]] = []
    for index in indices:
        merged = [index]
        for group in [g for g in groups
                      if any(is_within(o.root, index.root) or is_within(index.root, o.root) for o in g)]:
            groups.remove(group)
            merged.extend(group)
        groups.append(merged)

    shared = 0
    for group in groups:
        if len(group) == 1:
            continue
        shared += 1
        lock = threading.RLock()
        for index in group:
            index._lock = lock
            index._linked = [other for other in group if other is not index]
        logger.info("Nested targets share a lock", targets=sorted(member.root for member in group))
    return shared

"""
Filesystem change observer.

watchdog delivers events on its own thread; they are forwarded into the asyncio
loop through a queue and a single consumer task applies them to the target
indices. The observer only ever adds or refreshes entries.

A target that does not exist yet is followed through its closest existing
parent directory. Once the target is created it is indexed and watched like
any other.
"""

import asyncio
import os
from typing import Callable, Dict, List, Optional, Tuple

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import ObservedWatch

from .file_index import FileIndex, is_within
from .retention_models import PopulationError, WatchSubscriptionError

logger = structlog.get_logger(__name__)


def nearest_existing_parent(path: str) -> Optional[str]:
    """Closest ancestor of ``path`` that is an existing directory."""
    parent = os.path.dirname(path)
    while not os.path.isdir(parent):
        next_parent = os.path.dirname(parent)
        if next_parent == parent:
            return None
        parent = next_parent
    return parent


class _EventForwarder(FileSystemEventHandler):
    """Hands creation events from the watchdog thread to the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: 'asyncio.Queue[Tuple[str, bool]]'):
        self._loop = loop
        self._queue = queue

    def on_created(self, event: FileSystemEvent):
        self._forward(event.src_path, event.is_directory)

    def on_moved(self, event: FileSystemEvent):
        # A file renamed into a watched folder shows up as a move, not a create
        self._forward(event.dest_path, event.is_directory)

    def _forward(self, path, is_directory: bool):
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, (os.fsdecode(path), is_directory))
        except RuntimeError:
            logger.debug("Event loop closed, dropping file event", path=path)


class _PendingTarget:
    """A missing target and the parent watch waiting for it to appear."""

    def __init__(self, index: FileIndex):
        self.index = index
        self.parent: Optional[str] = None
        self.watch: Optional[ObservedWatch] = None


class FileWatcher:
    """Keeps target indices up to date with newly created files."""

    def __init__(self, indices: List[FileIndex], detailed_log: bool = False,
                 observer_factory: Callable[[], Observer] = Observer):
        self.indices = indices
        self.detailed_log = detailed_log
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._handler: Optional[_EventForwarder] = None
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._pending: Dict[str, _PendingTarget] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending_targets(self) -> List[str]:
        """Targets still waiting for their directory to be created."""
        return list(self._pending)

    async def start(self):
        """
        Register one recursive watch per existing target directory, and a
        parent watch for every target that does not exist yet.

        Raises:
            WatchSubscriptionError: a watch could not be registered.
        """
        if self.running:
            logger.warning("File watcher is already running")
            return

        loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._handler = _EventForwarder(loop, self._queue)
        self._observer = self._observer_factory()

        for index in self.indices:
            try:
                if os.path.isdir(index.root):
                    self._observer.schedule(self._handler, index.root, recursive=True)
                else:
                    logger.warning("Target folder does not exist, waiting for it", target=index.root)
                    self._pending[index.root] = _PendingTarget(index)
                    self._follow_parent(self._pending[index.root])
            except OSError as e:
                raise WatchSubscriptionError(f"Failed to watch {index.root}: {e}") from e

        try:
            self._observer.start()
        except (OSError, RuntimeError) as e:
            raise WatchSubscriptionError(f"Failed to start file observer: {e}") from e

        self._task = asyncio.create_task(self._consume_events())
        logger.info("File watcher started", targets=len(self.indices), pending=len(self._pending))

    async def stop(self):
        """Stop the observer thread and the consumer task."""
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None
        self._pending.clear()

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("File watcher stopped")

    def _follow_parent(self, pending: _PendingTarget):
        """Move the parent watch of a pending target to its closest existing ancestor."""
        parent = nearest_existing_parent(pending.index.root)
        if parent == pending.parent:
            return

        previous = pending.watch
        pending.parent = parent
        pending.watch = None
        if parent is not None:
            pending.watch = self._observer.schedule(self._handler, parent, recursive=False)
            if self.detailed_log:
                logger.debug("Watching parent of missing target", target=pending.index.root, parent=parent)
        self._release(previous)

    def _release(self, watch: Optional[ObservedWatch]):
        # Pending targets with a common parent share one watch
        if watch is None or any(p.watch == watch for p in self._pending.values()):
            return
        self._observer.unschedule(watch)

    async def _consume_events(self):
        while True:
            path, is_directory = await self._queue.get()
            try:
                if is_directory:
                    await self.handle_new_directory(path)
                else:
                    await self.handle_new_file(path)
            except Exception as e:
                logger.error("Watcher error", path=path, error=str(e))

    async def handle_new_directory(self, path: str) -> int:
        """
        Start watching pending targets that a new directory completes, and move
        the parent watch closer for targets it only leads towards.

        Returns:
            Number of targets that started being watched.
        """
        path = os.path.abspath(path)
        activated = 0
        for root in [root for root in self._pending if is_within(path, root)]:
            pending = self._pending[root]
            try:
                if not os.path.isdir(root):
                    self._follow_parent(pending)
                    continue

                self._observer.schedule(self._handler, root, recursive=True)
                del self._pending[root]
                self._release(pending.watch)
                # Scan after the watch exists so files created in between are not missed
                added = await asyncio.to_thread(pending.index.populate)
            except (OSError, PopulationError) as e:
                logger.error("Failed to pick up target folder", target=root, error=str(e))
                continue

            logger.info("Target folder appeared, now watching", target=root, files=added)
            activated += 1
        return activated

    async def handle_new_file(self, path: str) -> int:
        """
        Record a newly created file in every index whose target contains it.

        Returns:
            Number of indices updated.
        """
        path = os.path.abspath(path)
        matching = [index for index in self.indices if index.covers(path)]
        if not matching:
            return 0

        if self.detailed_log:
            logger.debug("File creation notification", path=path)

        updated = 0
        for index in matching:
            try:
                record = await asyncio.to_thread(index.upsert_from_stat, path)
            except OSError as e:
                logger.error("Error getting file info", path=path, error=str(e))
                continue
            if record is not None:
                updated += 1
        return updated

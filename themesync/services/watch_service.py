"""Change watcher for the explicit allow-list of synced files.

Filesystem events arrive on watchdog's observer thread and are handed to the
asyncio loop, where repeated changes to one path are debounced into a single
``ChangeEvent`` carrying the content at the end of the window.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)

_STOP_TIMEOUT = 5.0


@dataclass(frozen=True)
class ChangeEvent:
    """A debounced change to one watched file."""

    path: Path
    content: bytes


class _AllowListHandler(FileSystemEventHandler):
    """Forward watchdog events for allow-listed files to the watcher's loop."""

    def __init__(self, watcher: ChangeWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify_threadsafe(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify_threadsafe(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.drop_threadsafe(os.fsdecode(event.src_path), "removed")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not isinstance(event, FileSystemMovedEvent):
            return
        # Editors that save atomically rename a temp file over the target.
        self._watcher.drop_threadsafe(os.fsdecode(event.src_path), "moved away")
        self._watcher.notify_threadsafe(os.fsdecode(event.dest_path))


class ChangeWatcher:
    """Watch a fixed set of files and emit debounced change events.

    Args:
        paths: Absolute paths of the files to watch. Nothing outside this set
            is ever reported.
        debounce_seconds: Quiet period after the last change to a path before
            its event is emitted.
        observer_factory: Builds the watchdog observer (overridable in tests).
    """

    def __init__(
        self,
        paths: Iterable[Path],
        *,
        debounce_seconds: float = 0.1,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._paths = {Path(p) for p in paths}
        self._debounce_seconds = debounce_seconds
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[ChangeEvent | None] | None = None
        self._timers: dict[Path, asyncio.TimerHandle] = {}
        self._reads: set[asyncio.Task[None]] = set()

    @property
    def watched_paths(self) -> frozenset[Path]:
        return frozenset(self._paths)

    @property
    def is_running(self) -> bool:
        return self._queue is not None

    def start(self) -> None:
        """Start observing. Must be called from the event loop that consumes ``events()``."""
        if self._queue is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()

        observer = self._observer_factory()
        handler = _AllowListHandler(self)
        for directory in sorted({path.parent for path in self._paths}):
            if not directory.is_dir():
                logger.warning("Cannot watch %s: directory does not exist", directory)
                for path in [p for p in self._paths if p.parent == directory]:
                    self.drop(path, "parent directory missing")
                continue
            observer.schedule(handler, str(directory), recursive=False)
        observer.start()
        self._observer = observer
        logger.info("Watching %d file(s) for changes", len(self._paths))

    def stop(self) -> None:
        """Stop observing and end the current ``events()`` iteration."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._reads:
            task.cancel()
        self._reads.clear()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=_STOP_TIMEOUT)
            self._observer = None
        if self._queue is not None:
            self._queue.put_nowait(None)
            self._queue = None

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """Yield change events until ``stop()`` is called."""
        queue = self._queue
        if queue is None:
            msg = "ChangeWatcher.start() must be called before events()"
            raise RuntimeError(msg)
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    def notify_threadsafe(self, raw_path: str) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.on_change, Path(raw_path))

    def drop_threadsafe(self, raw_path: str, reason: str) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self.drop, Path(raw_path), reason)

    def on_change(self, path: Path) -> None:
        """Register a change to ``path``, restarting its debounce window."""
        if path not in self._paths or self._queue is None or self._loop is None:
            return
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        self._timers[path] = self._loop.call_later(self._debounce_seconds, self._flush, path)

    def drop(self, path: Path, reason: str) -> None:
        """Remove ``path`` from the watch set. The process keeps running."""
        if path not in self._paths:
            return
        self._paths.discard(path)
        timer = self._timers.pop(path, None)
        if timer is not None:
            timer.cancel()
        logger.warning("No longer watching %s (%s)", path, reason)

    def _flush(self, path: Path) -> None:
        self._timers.pop(path, None)
        if self._loop is None:
            return
        task = self._loop.create_task(self._emit(path))
        self._reads.add(task)
        task.add_done_callback(self._reads.discard)

    async def _emit(self, path: Path) -> None:
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            self.drop(path, f"read failed: {exc}")
            return
        queue = self._queue
        if queue is not None and path in self._paths:
            queue.put_nowait(ChangeEvent(path=path, content=content))

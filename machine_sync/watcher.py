"""File system watcher for Machine Sync.

Uses the watchdog library to monitor the source folder and turns its
notifications into ``ChangeEvent`` objects, which are handed out one at
a time by ``FolderWatcher.events()``.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import queue
from collections.abc import Iterator
from typing import Any

from watchdog.events import (
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from machine_sync.errors import WatchError
from machine_sync.events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

# Sentinel pushed by stop() to wake up a blocked consumer.
_STOP = None


def relative_posix_path(path: str, root: str) -> str | None:
    """Return *path* relative to *root* with forward slashes.

    Returns None when *path* is not below *root*.
    """
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(root))
    if rel == os.curdir or rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return None
    return rel.replace(os.sep, "/")


class ChangeHandler(FileSystemEventHandler):
    """Watchdog handler that converts file notifications into ChangeEvents."""

    def __init__(
        self,
        root: str,
        sink: queue.Queue,
        exclude_patterns: list[str] | None = None,
    ):
        """Initialise the handler with an optional exclude filter."""
        super().__init__()
        self._root = root
        self._sink = sink
        self._exclude_patterns = exclude_patterns or []

    def _should_track(self, path: str) -> bool:
        name = os.path.basename(path)
        for pattern in self._exclude_patterns:
            if fnmatch.fnmatch(name.lower(), pattern.lower()):
                logger.debug("Excluding %s (matches %s)", name, pattern)
                return False
        return True

    def _emit(self, path: Any, kind: ChangeKind) -> None:
        path = os.fsdecode(path)
        if not self._should_track(path):
            return
        rel = relative_posix_path(path, self._root)
        if rel is None:
            logger.debug("Ignoring %s (outside %s)", path, self._root)
            return
        event = ChangeEvent(rel, kind)
        logger.debug("event: %s", event)
        self._sink.put(event)

    def dispatch(self, event: FileSystemEvent) -> None:
        """Route a watchdog event, logging rather than raising on errors."""
        try:
            super().dispatch(event)
        except Exception:
            logger.exception("error: could not handle notification %r", event)

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        """Handle a new file creation event."""
        if event.is_directory:
            return
        self._emit(event.src_path, ChangeKind.CREATED)

    def on_modified(self, event: FileModifiedEvent) -> None:  # type: ignore[override]
        """Handle a file modification event."""
        if event.is_directory:
            return
        self._emit(event.src_path, ChangeKind.MODIFIED)

    def on_deleted(self, event: FileDeletedEvent) -> None:  # type: ignore[override]
        """Handle a file deletion event."""
        if event.is_directory:
            return
        self._emit(event.src_path, ChangeKind.DELETED)

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """Handle a rename; a move out of the root counts as a delete."""
        if event.is_directory:
            return
        dest = os.fsdecode(event.dest_path)
        if relative_posix_path(dest, self._root) is None:
            self._emit(event.src_path, ChangeKind.DELETED)
        else:
            self._emit(dest, ChangeKind.RENAMED)


class FolderWatcher:
    """Watches one folder and yields its changes.

    Usage:
        watcher = FolderWatcher(source)
        watcher.start()
        for event in watcher.events():
            ...
        watcher.stop()
    """

    def __init__(
        self,
        source_folder: str,
        exclude_patterns: list[str] | None = None,
        recursive: bool = False,
    ):
        """Create a new folder watcher."""
        self.source_folder = source_folder
        self._recursive = recursive
        self._queue: queue.Queue = queue.Queue()
        self._handler = ChangeHandler(
            source_folder, self._queue, exclude_patterns or None
        )
        self._observer: Any | None = None
        self._stopped = False

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the source folder.

        Raises ``FileNotFoundError`` if the folder does not exist; errors
        from the OS watch mechanism propagate unchanged.
        """
        if not os.path.isdir(self.source_folder):
            logger.error("Source folder does not exist: %s", self.source_folder)
            raise FileNotFoundError(
                f"Source folder does not exist: {self.source_folder}"
            )
        if self._stopped:
            raise RuntimeError("A stopped watcher cannot be restarted")

        observer = Observer()
        observer.schedule(self._handler, self.source_folder, recursive=self._recursive)
        observer.start()
        self._observer = observer
        logger.info(
            "Watching '%s' (recursive=%s)", self.source_folder, self._recursive
        )

    def request_stop(self) -> None:
        """Ask a running ``events()`` loop to finish; safe from signal handlers."""
        self._stopped = True

    def stop(self) -> None:
        """Stop watching and release resources."""
        self.request_stop()
        self._queue.put(_STOP)
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
        logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        return self._observer is not None and self._observer.is_alive()

    # ---- consumption ----

    def events(self, poll_interval: float = 1.0) -> Iterator[ChangeEvent]:
        """Yield change events until the watcher is stopped.

        Changes that arrived before iteration started are yielded first.
        Raises ``WatchError`` if the observer thread dies while watching.
        """
        while not self._stopped:
            try:
                event = self._queue.get(timeout=poll_interval)
            except queue.Empty:
                observer = self._observer
                if observer is None:
                    return
                if not observer.is_alive() and not self._stopped:
                    logger.error(
                        "Watch on '%s' is no longer running", self.source_folder
                    )
                    raise WatchError(f"Watch on {self.source_folder} stopped")
                continue
            if event is _STOP:
                return
            yield event

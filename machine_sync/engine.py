"""
Sync engine for Machine Sync.

Replays local change events against the remote machine.  Deletes become a
remote remove; creates, modifications and renames become a full overwrite
(remove, create, write the whole file).  Each event is handled on a
bounded worker pool so the watcher never waits on the network.  All
remote calls for one event happen while holding the shared session lock,
so workers never interleave operations on the SFTP channel.
"""

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field

import paramiko

from machine_sync.config import DEFAULT_WORKERS
from machine_sync.errors import ErrorSink, SyncFailure
from machine_sync.events import ChangeEvent
from machine_sync.session import RemoteSession

logger = logging.getLogger(__name__)

_REMOTE_ERRORS = (OSError, EOFError, paramiko.SSHException)


def remote_path_for(remote_base_path: str, path: str) -> str:
    """Map a watch-root relative path onto the remote machine.

    The remote side is always POSIX, so the parts are joined with a
    forward slash whatever the local platform.
    """
    return f"{remote_base_path}/{path}"


@dataclass
class SyncStats:
    """Aggregated sync statistics."""
    total_uploaded: int = 0
    total_deleted: int = 0
    total_failed: int = 0
    total_bytes: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record_upload(self, size: int) -> None:
        with self._lock:
            self.total_uploaded += 1
            self.total_bytes += size

    def record_delete(self) -> None:
        with self._lock:
            self.total_deleted += 1

    def record_failure(self) -> None:
        with self._lock:
            self.total_failed += 1

    def summary(self) -> str:
        with self._lock:
            return (
                f"{self.total_uploaded} uploaded ({self.total_bytes:,} bytes), "
                f"{self.total_deleted} deleted, {self.total_failed} failed"
            )


class SyncEngine:
    """
    Applies change events to the remote machine.

    Parameters
    ----------
    session : RemoteSession
        The shared SFTP session.  Its lock serializes remote calls.
    source_root : str
        The local folder being watched; event paths are relative to it.
    remote_base_path : str
        Destination folder on the remote machine.  It must already exist.
    error_sink : ErrorSink
        Receives one SyncFailure per failed event.
    max_workers : int
        Size of the worker pool handling events.
    """

    def __init__(
        self,
        session: RemoteSession,
        source_root: str,
        remote_base_path: str,
        error_sink: ErrorSink,
        max_workers: int = DEFAULT_WORKERS,
    ):
        self.session = session
        self.source_root = source_root
        self.remote_base_path = remote_base_path
        self._errors = error_sink
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="Sync"
        )
        self.stats = SyncStats()

    def remote_path(self, event: ChangeEvent) -> str:
        return remote_path_for(self.remote_base_path, event.path)

    def local_path(self, event: ChangeEvent) -> str:
        return os.path.join(self.source_root, *event.path.split("/"))

    # ---- scheduling ----

    def dispatch(self, event: ChangeEvent) -> "Future[bool]":
        """Queue *event* for handling on the worker pool and return at once."""
        return self._executor.submit(self.handle, event)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; with *wait*, finish the ones queued."""
        self._executor.shutdown(wait=wait)

    # ---- handling ----

    def handle(self, event: ChangeEvent) -> bool:
        """Apply *event* remotely.  Returns True on success.

        Failures are reported to the error sink, never raised.
        """
        remote = self.remote_path(event)
        try:
            if event.is_delete:
                return self._delete(event, remote)
            return self._upload(event, remote)
        except Exception as exc:
            self._fail(event, exc, f"unexpected error syncing {remote}: {exc}")
            return False

    def _fail(self, event: ChangeEvent, exc: BaseException, message: str) -> None:
        self.stats.record_failure()
        self._errors.report(SyncFailure(event=event, cause=exc, message=message))

    def _delete(self, event: ChangeEvent, remote: str) -> bool:
        logger.info("deleting %s", remote)
        try:
            with self.session.lock:
                self.session.remove(remote)
        except _REMOTE_ERRORS as exc:
            self._fail(event, exc, f"remove {remote} failed: {exc}")
            return False
        self.stats.record_delete()
        return True

    def _upload(self, event: ChangeEvent, remote: str) -> bool:
        local = self.local_path(event)
        logger.info("updating %s", remote)
        try:
            fh = open(local, "rb")
        except OSError as exc:
            self._fail(event, exc, f"open {local} failed: {exc}")
            return False

        with fh, self.session.lock:
            try:
                self.session.remove(remote)
            except _REMOTE_ERRORS as exc:
                # Usually the file does not exist yet.
                logger.debug("no previous %s (%s)", remote, exc)

            try:
                handle = self.session.create(remote)
            except _REMOTE_ERRORS as exc:
                self._fail(event, exc, f"create {remote} failed: {exc}")
                return False

            try:
                data = fh.read()
            except OSError as exc:
                _close_quietly(handle, remote)
                self._fail(event, exc, f"read {local} failed: {exc}")
                return False

            try:
                self.session.write(handle, data)
                handle.close()
            except _REMOTE_ERRORS as exc:
                _close_quietly(handle, remote)
                self._fail(event, exc, f"write {remote} failed: {exc}")
                return False

        logger.debug("wrote %d bytes to %s", len(data), remote)
        self.stats.record_upload(len(data))
        return True


def _close_quietly(handle, remote: str) -> None:
    try:
        handle.close()
    except _REMOTE_ERRORS:
        logger.debug("Could not close remote handle for %s", remote, exc_info=True)

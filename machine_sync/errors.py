"""
Error types and the failure reporting sink for Machine Sync.

Startup problems (bad flags, missing machine config, unreadable keys,
unreachable hosts) are raised as ``MachineSyncError`` subclasses and end
the process.  Problems while syncing a single file never do: they are
wrapped in a ``SyncFailure`` and handed to the ``ErrorSink``, whose one
reporting thread logs them in arrival order.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass

from machine_sync.events import ChangeEvent

logger = logging.getLogger(__name__)


class MachineSyncError(Exception):
    """Base class for fatal Machine Sync errors."""


class ConfigError(MachineSyncError):
    """Required configuration is missing or malformed."""


class CredentialError(MachineSyncError):
    """The private key could not be loaded or parsed."""


class SessionError(MachineSyncError):
    """The SSH transport or SFTP session could not be established."""


class WatchError(MachineSyncError):
    """The source folder could not be watched."""


@dataclass(frozen=True)
class SyncFailure:
    """Failure to replay one change event on the remote machine."""

    event: ChangeEvent
    cause: BaseException
    message: str

    @property
    def kind(self) -> str:
        """Name of the underlying error type."""
        return type(self.cause).__name__

    def __str__(self) -> str:
        return self.message


_STOP = object()


class ErrorSink:
    """
    Serialized channel for sync failures.

    ``report`` may be called from any worker thread and never blocks; the
    queue is unbounded.  A single daemon thread drains it and logs each
    failure.  With ``verbose`` set the traceback of the cause is logged too.
    """

    def __init__(self, verbose: bool = False):
        self._verbose = verbose
        self._queue: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None
        self._reported = 0
        self._lock = threading.Lock()

    @property
    def reported(self) -> int:
        """Number of failures logged so far."""
        with self._lock:
            return self._reported

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the reporting thread."""
        if self.is_running:
            return
        self._thread = threading.Thread(
            target=self._drain, daemon=True, name="ErrorSink"
        )
        self._thread.start()

    def report(self, failure: SyncFailure) -> None:
        """Queue *failure* for reporting."""
        self._queue.put(failure)

    def close(self, timeout: float | None = 5) -> None:
        """Report everything still queued, then stop the reporting thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout=timeout)
        self._thread = None

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            try:
                self._log(item)
            except Exception:
                logger.exception("Could not report sync failure")
            with self._lock:
                self._reported += 1

    def _log(self, failure: SyncFailure) -> None:
        if self._verbose:
            logger.error(
                "error during sync: %s (event=%s, kind=%s)",
                failure.message,
                failure.event,
                failure.kind,
                exc_info=(
                    type(failure.cause),
                    failure.cause,
                    failure.cause.__traceback__,
                ),
            )
        else:
            logger.error("error during sync: %s", failure.message)

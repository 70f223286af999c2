"""
Headless sync runner for Machine Sync.

Connects to the target machine, starts the error sink, the sync engine
and the folder watcher, then feeds every change from the watcher to the
engine until SIGINT/SIGTERM:

    machine-sync -d ./src -m dev -p /srv/app
"""

import logging
import logging.handlers
import signal
import sys
from dataclasses import dataclass

from machine_sync import __app_name__, __version__
from machine_sync.config import (
    LOG_BACKUP_COUNT,
    MAX_LOG_SIZE_MB,
    RemoteTarget,
    SyncOptions,
    resolve_target,
)
from machine_sync.engine import SyncEngine
from machine_sync.errors import ErrorSink, WatchError
from machine_sync.keys import KeyChain
from machine_sync.session import RemoteSession, connect
from machine_sync.watcher import FolderWatcher

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(debug: bool = False, log_file: str | None = None) -> None:
    """Configure stderr logging and an optional rotating log file."""
    level = logging.DEBUG if debug else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(_LOG_FORMAT)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    if log_file:
        fh = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)

    # paramiko is chatty at INFO (banner, auth and channel messages)
    logging.getLogger("paramiko").setLevel(logging.DEBUG if debug else logging.WARNING)


@dataclass
class SyncRuntime:
    """The running pieces of one sync process."""

    target: RemoteTarget
    session: RemoteSession
    errors: ErrorSink
    engine: SyncEngine
    watcher: FolderWatcher

    def serve(self) -> None:
        """Dispatch every change from the watcher until it stops."""
        for event in self.watcher.events():
            self.engine.dispatch(event)

    def close(self) -> None:
        """Stop watching, finish queued events and disconnect."""
        self.watcher.stop()
        self.engine.shutdown(wait=True)
        self.errors.close()
        self.session.close()
        logger.info("Sync summary: %s", self.engine.stats.summary())


def start_sync(options: SyncOptions) -> SyncRuntime:
    """
    Connect and start watching, without entering the dispatch loop.

    Every failure here is fatal and raised as a ``MachineSyncError``.
    """
    options.validate()
    target, key_path = resolve_target(
        options.store, options.machine, options.user, options.destination
    )
    keychain = KeyChain.from_file(key_path)
    session = connect(target, keychain)
    logger.info(
        "machine sync: src=%s dest=%s machine=%s config-dir=%s",
        options.directory,
        options.destination,
        options.machine,
        options.store,
    )

    errors = ErrorSink(verbose=options.debug)
    errors.start()
    engine = SyncEngine(
        session=session,
        source_root=options.directory,
        remote_base_path=target.remote_base_path,
        error_sink=errors,
        max_workers=options.workers,
    )
    watcher = FolderWatcher(
        options.directory,
        exclude_patterns=options.exclude_patterns or None,
        recursive=options.recursive,
    )
    try:
        watcher.start()
    except (OSError, RuntimeError) as exc:
        engine.shutdown(wait=False)
        errors.close()
        session.close()
        raise WatchError(f"Cannot watch {options.directory}: {exc}") from exc

    return SyncRuntime(target, session, errors, engine, watcher)


def run(options: SyncOptions, install_signals: bool = True) -> SyncRuntime:
    """Run the sync loop in the foreground until SIGINT/SIGTERM."""
    logger.info("%s %s starting.", __app_name__, __version__)
    runtime = start_sync(options)

    previous = {}
    if install_signals:

        def _handler(sig, frame):
            logger.info("Received signal %d, stopping.", sig)
            runtime.watcher.request_stop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _handler)

    try:
        runtime.serve()
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
        runtime.close()
    return runtime

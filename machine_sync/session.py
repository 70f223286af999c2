"""
SSH/SFTP session for Machine Sync.

``connect`` opens one authenticated transport to the target machine and
an SFTP channel on top of it.  The resulting ``RemoteSession`` is shared
by every sync worker for the lifetime of the process; ``session.lock``
must be held around each sequence of remote calls.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import paramiko

from machine_sync.config import RemoteTarget
from machine_sync.errors import SessionError
from machine_sync.keys import KeyChain

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


class RemoteSession:
    """The three remote operations the sync engine needs, over one SFTP client."""

    def __init__(
        self,
        client: paramiko.SFTPClient,
        transport: paramiko.Transport | None = None,
    ):
        self._client = client
        self._transport = transport
        self.lock = threading.Lock()

    def remove(self, path: str) -> None:
        """Delete the remote file at *path*."""
        self._client.remove(path)

    def create(self, path: str) -> Any:
        """Create (or truncate) the remote file at *path* and return its handle."""
        return self._client.open(path, "wb")

    def write(self, handle: Any, data: bytes) -> None:
        """Write *data* to an open remote file handle."""
        handle.write(data)

    def close(self) -> None:
        """Close SFTP client + underlying transport."""
        try:
            self._client.close()
        finally:
            if self._transport is not None:
                self._transport.close()
                self._transport = None
        logger.debug("Remote session closed.")


def connect(
    target: RemoteTarget, keychain: KeyChain, timeout: float = DEFAULT_TIMEOUT
) -> RemoteSession:
    """Authenticate to *target* with *keychain* and open an SFTP session.

    Raises ``SessionError`` on any failure; there is no retry.
    """
    target.validate()
    pkey = keychain.pkey
    logger.debug(
        "connecting host=%s:%d user=%s", target.host, target.port, target.user
    )

    try:
        transport = paramiko.Transport((target.host, target.port))
    except (OSError, paramiko.SSHException) as exc:
        raise SessionError(
            f"Cannot reach {target.host}:{target.port}: {exc}"
        ) from exc

    transport.banner_timeout = timeout
    transport.auth_timeout = timeout

    try:
        transport.connect(username=target.user, pkey=pkey)
        client = paramiko.SFTPClient.from_transport(transport)
        if client is None:
            raise SessionError("SFTP subsystem could not be opened")
    except SessionError:
        transport.close()
        raise
    except (OSError, paramiko.SSHException) as exc:
        transport.close()
        raise SessionError(
            f"SSH session to {target.user}@{target.host}:{target.port} failed: {exc}"
        ) from exc

    logger.debug("connected to %s", transport.getpeername())
    return RemoteSession(client, transport)

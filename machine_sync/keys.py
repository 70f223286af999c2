"""Private key handling for the SSH transport."""

from __future__ import annotations

import logging
from pathlib import Path

import paramiko
from paramiko.pkey import UnknownKeyType

from machine_sync.errors import CredentialError

logger = logging.getLogger(__name__)


class KeyChain:
    """Holds one parsed private key and signs authentication data with it."""

    def __init__(self, key: paramiko.PKey | None = None):
        self._key = key

    @classmethod
    def from_file(cls, path: str | Path, passphrase: str | None = None) -> KeyChain:
        """Return a keychain loaded from the PEM/OpenSSH key at *path*."""
        kc = cls()
        kc.load_pem(path, passphrase)
        return kc

    def load_pem(self, path: str | Path, passphrase: str | None = None) -> None:
        """Parse the private key file at *path*.

        Any key type paramiko understands is accepted (RSA, ECDSA, Ed25519).
        Raises ``CredentialError`` when the file is missing or unparseable.
        """
        secret = passphrase.encode() if passphrase else None
        try:
            self._key = paramiko.PKey.from_path(Path(path), secret)
        except (OSError, paramiko.SSHException, UnknownKeyType, ValueError) as exc:
            raise CredentialError(f"Cannot load private key {path}: {exc}") from exc
        logger.debug("Loaded %s key from %s", self._key.get_name(), path)

    @property
    def loaded(self) -> bool:
        return self._key is not None

    @property
    def pkey(self) -> paramiko.PKey:
        """The parsed key, for handing to ``Transport.connect``."""
        if self._key is None:
            raise CredentialError("No private key loaded")
        return self._key

    @property
    def public_key(self) -> str:
        """Public half in OpenSSH ``type base64`` form."""
        return f"{self.pkey.get_name()} {self.pkey.get_base64()}"

    @property
    def fingerprint(self) -> str:
        return self.pkey.fingerprint

    def sign(self, data: bytes) -> bytes:
        """Sign *data* and return the SSH signature blob."""
        return self.pkey.sign_ssh_data(data).asbytes()

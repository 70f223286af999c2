"""Configuration management for Machine Sync.

Connection details for a target machine are read from a docker-machine
style store: one directory per machine holding a ``config.json`` and the
``id_rsa`` private key used to log in.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from machine_sync.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_SSH_PORT = 22
DEFAULT_USER = "root"
DEFAULT_WORKERS = 4

CONFIG_FILENAME = "config.json"
KEY_FILENAME = "id_rsa"

# ---- log rotation ----
MAX_LOG_SIZE_MB = 10
LOG_BACKUP_COUNT = 3

DEFAULT_DRIVER: dict[str, Any] = {
    "IPAddress": "",  # blank = DEFAULT_HOST
    "SSHPort": 0,  # 0 = DEFAULT_SSH_PORT
}


def default_machine_store() -> Path:
    """Return the default machine store, ``~/.docker/machines``."""
    home = os.environ.get("HOME") or str(Path.home())
    return Path(home) / ".docker" / "machines"


@dataclass(frozen=True)
class RemoteTarget:
    """Where and as whom to sync."""

    host: str
    user: str
    remote_base_path: str
    port: int = DEFAULT_SSH_PORT

    def validate(self) -> None:
        """Raise ``ConfigError`` unless the target can be connected to."""
        if not self.host:
            raise ConfigError("remote host is empty")
        if not self.user:
            raise ConfigError("remote user is empty")
        if not self.remote_base_path:
            raise ConfigError("remote destination path is empty")
        if not 0 < self.port < 65536:
            raise ConfigError(f"invalid SSH port: {self.port}")

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.port}{self.remote_base_path}"


class MachineConfig:
    """Connection settings for one machine in the store."""

    def __init__(self, store: str | Path, name: str):
        """Load ``<store>/<name>/config.json``."""
        self.store = Path(store)
        self.name = name
        self._driver: dict[str, Any] = dict(DEFAULT_DRIVER)
        self.load()

    @property
    def machine_dir(self) -> Path:
        return self.store / self.name

    @property
    def config_path(self) -> Path:
        return self.machine_dir / CONFIG_FILENAME

    @property
    def key_path(self) -> Path:
        """Private key used to authenticate against the machine."""
        return self.machine_dir / KEY_FILENAME

    # ---- persistence ----

    def load(self) -> None:
        """Read the machine config, applying defaults for missing keys."""
        try:
            with open(self.config_path, encoding="utf-8") as fh:
                stored = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            raise ConfigError(
                f"Cannot read machine config {self.config_path}: {exc}"
            ) from exc
        if not isinstance(stored, dict):
            raise ConfigError(f"Malformed machine config {self.config_path}")
        driver = stored.get("Driver") or {}
        if not isinstance(driver, dict):
            raise ConfigError(f"Malformed Driver section in {self.config_path}")
        self._driver = {**DEFAULT_DRIVER, **driver}
        logger.debug("Machine config loaded from %s", self.config_path)

    # ---- accessors ----

    @property
    def ip_address(self) -> str:
        """Return the machine address, falling back to localhost."""
        return self._driver.get("IPAddress") or DEFAULT_HOST

    @property
    def ssh_port(self) -> int:
        """Return the SSH port, falling back to 22."""
        try:
            port = int(self._driver.get("SSHPort") or 0)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid SSHPort in {self.config_path}") from exc
        return port or DEFAULT_SSH_PORT

    def target(self, user: str, remote_base_path: str) -> RemoteTarget:
        """Return a validated ``RemoteTarget`` for this machine."""
        target = RemoteTarget(
            host=self.ip_address,
            port=self.ssh_port,
            user=user,
            remote_base_path=remote_base_path,
        )
        target.validate()
        return target


def resolve_target(
    store: str | Path, machine: str, user: str, destination: str
) -> tuple[RemoteTarget, Path]:
    """Look up *machine* in *store*.

    Returns the validated target and the path of its private key.
    """
    if not machine:
        raise ConfigError("machine name is empty")
    cfg = MachineConfig(store, machine)
    return cfg.target(user, destination), cfg.key_path


@dataclass
class SyncOptions:
    """Everything needed to start syncing, as given on the command line."""

    directory: str = ""
    destination: str = ""
    machine: str = ""
    machine_path: str = ""
    user: str = DEFAULT_USER
    debug: bool = False
    recursive: bool = False
    exclude_patterns: list[str] = field(default_factory=list)
    workers: int = DEFAULT_WORKERS
    log_file: str | None = None

    def validate(self) -> None:
        """Raise ``ConfigError`` naming the first required option that is empty."""
        if not self.directory:
            raise ConfigError("you must specify a directory")
        if not self.machine:
            raise ConfigError("you must specify a machine")
        if not self.destination:
            raise ConfigError("you must specify a destination path")
        if not self.user:
            raise ConfigError("you must specify a user")
        if self.workers < 1:
            raise ConfigError("workers must be at least 1")

    @property
    def store(self) -> Path:
        """Machine store to read connection settings from."""
        return Path(self.machine_path) if self.machine_path else default_machine_store()

"""Configuration for homekeep.

Configuration is stored in ~/.homekeep/config.toml
The operation queue is stored in ~/.homekeep/<db_name> (SQLite)

Environment variables override file values:
    HOMEKEEP_DIR         data directory
    HOMEKEEP_REMOTE_URL  base URL of the remote entity store
    HOMEKEEP_API_KEY     bearer token for the remote entity store
    HOMEKEEP_TIMEOUT     per-call timeout in seconds
    HOMEKEEP_STORAGE     "sqlite" or "memory"
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ("sqlite", "memory")

# Database file name: no path separators
_DB_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.]+$")


def get_homekeep_dir() -> Path:
    """Get homekeep data directory.

    Priority:
    1. HOMEKEEP_DIR environment variable
    2. ~/.homekeep/
    """
    env_dir = os.environ.get("HOMEKEEP_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".homekeep"


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", key, value)
        return default


def _toml_str(value: str) -> str:
    """Quote a string for TOML output."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class RemoteSettings:
    """Remote entity store connection settings."""

    base_url: str = "http://localhost:8000/api"
    api_key: str | None = None
    timeout: float = 15.0
    health_path: str = "/health"

    @property
    def health_url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.health_path.lstrip("/")

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_url": self.base_url,
            "api_key": self.api_key,
            "timeout": self.timeout,
            "health_path": self.health_path,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteSettings:
        timeout = data.get("timeout", 15.0)
        if not isinstance(timeout, int | float) or timeout <= 0:
            timeout = 15.0
        return cls(
            base_url=data.get("base_url", "http://localhost:8000/api"),
            api_key=data.get("api_key") or None,
            timeout=float(timeout),
            health_path=data.get("health_path", "/health"),
        )


@dataclass(frozen=True)
class SyncSettings:
    """Replay scheduling settings.

    Backoff after n consecutive transient failures is
    ``min(backoff_base * 2 ** (n - 1), backoff_max)`` seconds.
    """

    backoff_base: float = 1.0
    backoff_max: float = 60.0
    probe_interval: float = 15.0
    auto_probe: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "backoff_base": self.backoff_base,
            "backoff_max": self.backoff_max,
            "probe_interval": self.probe_interval,
            "auto_probe": self.auto_probe,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncSettings:
        base = max(0.0, float(data.get("backoff_base", 1.0)))
        cap = max(base, float(data.get("backoff_max", 60.0)))
        return cls(
            backoff_base=base,
            backoff_max=cap,
            probe_interval=max(1.0, float(data.get("probe_interval", 15.0))),
            auto_probe=bool(data.get("auto_probe", True)),
        )


@dataclass(frozen=True)
class StorageSettings:
    """Local operation store settings."""

    backend: str = "sqlite"
    db_name: str = "queue.db"

    def to_dict(self) -> dict[str, Any]:
        return {"backend": self.backend, "db_name": self.db_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageSettings:
        backend = data.get("backend", "sqlite")
        if backend not in STORAGE_BACKENDS:
            logger.warning("Unknown storage backend %r, using sqlite", backend)
            backend = "sqlite"
        db_name = data.get("db_name", "queue.db")
        if not _DB_NAME_PATTERN.match(db_name):
            db_name = "queue.db"
        return cls(backend=backend, db_name=db_name)


@dataclass
class HomekeepConfig:
    """Configuration shared by the CLI and any embedding application."""

    data_dir: Path = field(default_factory=get_homekeep_dir)
    remote: RemoteSettings = field(default_factory=RemoteSettings)
    sync: SyncSettings = field(default_factory=SyncSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    version: str = "1.0"

    @classmethod
    def load(cls, config_path: Path | None = None) -> HomekeepConfig:
        """Load configuration from file (creating a default one) and apply env overrides."""
        if config_path is None:
            data_dir = get_homekeep_dir()
            config_path = data_dir / "config.toml"
        else:
            data_dir = config_path.parent

        if not config_path.exists():
            config = cls(data_dir=data_dir)
            config.save()
            return config.with_env_overrides()

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        config = cls(
            data_dir=data_dir,
            remote=RemoteSettings.from_dict(data.get("remote", {})),
            sync=SyncSettings.from_dict(data.get("sync", {})),
            storage=StorageSettings.from_dict(data.get("storage", {})),
            version=data.get("version", "1.0"),
        )
        return config.with_env_overrides()

    def with_env_overrides(self) -> HomekeepConfig:
        """Return a copy with HOMEKEEP_* environment variables applied."""
        remote = RemoteSettings(
            base_url=os.getenv("HOMEKEEP_REMOTE_URL", self.remote.base_url),
            api_key=os.getenv("HOMEKEEP_API_KEY", self.remote.api_key or "") or None,
            timeout=_env_float("HOMEKEEP_TIMEOUT", self.remote.timeout),
            health_path=self.remote.health_path,
        )
        storage = StorageSettings.from_dict(
            {
                "backend": os.getenv("HOMEKEEP_STORAGE", self.storage.backend),
                "db_name": self.storage.db_name,
            }
        )
        return HomekeepConfig(
            data_dir=self.data_dir,
            remote=remote,
            sync=self.sync,
            storage=storage,
            version=self.version,
        )

    def save(self) -> None:
        """Save configuration to TOML file (atomic write via temp+rename)."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        config_path = self.data_dir / "config.toml"

        lines = [
            "# homekeep configuration",
            "",
            f"version = {_toml_str(self.version)}",
            "",
            "# Remote entity store",
            "[remote]",
            f"base_url = {_toml_str(self.remote.base_url)}",
        ]
        if self.remote.api_key:
            lines.append(f"api_key = {_toml_str(self.remote.api_key)}")
        lines += [
            f"timeout = {self.remote.timeout}",
            f"health_path = {_toml_str(self.remote.health_path)}",
            "",
            "# Offline queue replay",
            "[sync]",
            f"backoff_base = {self.sync.backoff_base}",
            f"backoff_max = {self.sync.backoff_max}",
            f"probe_interval = {self.sync.probe_interval}",
            f"auto_probe = {'true' if self.sync.auto_probe else 'false'}",
            "",
            "# Local operation store",
            "[storage]",
            f"backend = {_toml_str(self.storage.backend)}",
            f"db_name = {_toml_str(self.storage.db_name)}",
        ]

        content = "\n".join(lines) + "\n"
        fd, tmp_path = tempfile.mkstemp(dir=str(self.data_dir), suffix=".toml.tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            Path(tmp_path).replace(config_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    @property
    def config_path(self) -> Path:
        """Get path to config file."""
        return self.data_dir / "config.toml"

    @property
    def db_path(self) -> Path:
        """Get path to the operation queue database."""
        return self.data_dir / self.storage.db_name

    def to_dict(self) -> dict[str, Any]:
        remote = self.remote.to_dict()
        if remote["api_key"]:
            remote["api_key"] = "***"
        return {
            "data_dir": str(self.data_dir),
            "version": self.version,
            "remote": remote,
            "sync": self.sync.to_dict(),
            "storage": self.storage.to_dict(),
        }

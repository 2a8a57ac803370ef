"""Tests for config.py — TOML configuration with environment overrides."""

from __future__ import annotations

import tomllib
from pathlib import Path

import pytest

from homekeep.config import (
    HomekeepConfig,
    RemoteSettings,
    StorageSettings,
    SyncSettings,
    get_homekeep_dir,
)

_ENV_KEYS = (
    "HOMEKEEP_DIR",
    "HOMEKEEP_REMOTE_URL",
    "HOMEKEEP_API_KEY",
    "HOMEKEEP_TIMEOUT",
    "HOMEKEEP_STORAGE",
)


@pytest.fixture
def homekeep_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    data_dir = tmp_path / "hk"
    monkeypatch.setenv("HOMEKEEP_DIR", str(data_dir))
    return data_dir


# ─────────── Data directory ───────────


class TestHomekeepDir:
    def test_env_var_wins(self, homekeep_dir: Path) -> None:
        assert get_homekeep_dir() == homekeep_dir

    def test_default_under_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("HOMEKEEP_DIR", raising=False)
        assert get_homekeep_dir() == Path.home() / ".homekeep"


# ─────────── Load / save ───────────


class TestLoad:
    def test_creates_default_file(self, homekeep_dir: Path) -> None:
        config = HomekeepConfig.load()

        assert config.config_path.exists()
        assert config.remote == RemoteSettings()
        assert config.sync == SyncSettings()
        assert config.db_path == homekeep_dir / "queue.db"

        with open(config.config_path, "rb") as f:
            data = tomllib.load(f)
        assert data["storage"]["backend"] == "sqlite"
        assert "api_key" not in data["remote"]

    def test_save_load_round_trip(self, homekeep_dir: Path) -> None:
        config = HomekeepConfig(
            data_dir=homekeep_dir,
            remote=RemoteSettings(
                base_url="https://home.example/api", api_key='s"cret', timeout=4.0
            ),
            sync=SyncSettings(backoff_base=2.0, backoff_max=30.0, auto_probe=False),
            storage=StorageSettings(backend="memory", db_name="other.db"),
        )
        config.save()

        loaded = HomekeepConfig.load()

        assert loaded.remote == config.remote
        assert loaded.sync == config.sync
        assert loaded.storage == config.storage
        assert list(homekeep_dir.glob("*.tmp")) == []

    def test_explicit_path(self, tmp_path: Path, homekeep_dir: Path) -> None:
        other = tmp_path / "elsewhere" / "config.toml"
        config = HomekeepConfig.load(other)

        assert config.data_dir == other.parent
        assert other.exists()
        assert not homekeep_dir.exists()

    def test_invalid_values_fall_back(self, homekeep_dir: Path) -> None:
        homekeep_dir.mkdir(parents=True)
        (homekeep_dir / "config.toml").write_text(
            "[remote]\n"
            "timeout = -3\n"
            "[sync]\n"
            "backoff_base = 5.0\n"
            "backoff_max = 1.0\n"
            "probe_interval = 0.1\n"
            "[storage]\n"
            'backend = "postgres"\n'
            'db_name = "../escape.db"\n'
        )

        config = HomekeepConfig.load()

        assert config.remote.timeout == 15.0
        assert config.sync.backoff_max == 5.0
        assert config.sync.probe_interval == 1.0
        assert config.storage.backend == "sqlite"
        assert config.storage.db_name == "queue.db"


# ─────────── Environment overrides ───────────


class TestEnvOverrides:
    def test_overrides_applied(self, homekeep_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOMEKEEP_REMOTE_URL", "http://10.0.0.2:8000/api")
        monkeypatch.setenv("HOMEKEEP_API_KEY", "token")
        monkeypatch.setenv("HOMEKEEP_TIMEOUT", "2.5")
        monkeypatch.setenv("HOMEKEEP_STORAGE", "memory")

        config = HomekeepConfig.load()

        assert config.remote.base_url == "http://10.0.0.2:8000/api"
        assert config.remote.api_key == "token"
        assert config.remote.timeout == 2.5
        assert config.storage.backend == "memory"

    def test_overrides_not_persisted(
        self, homekeep_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOMEKEEP_API_KEY", "token")
        HomekeepConfig.load()

        assert "token" not in (homekeep_dir / "config.toml").read_text()

    def test_invalid_env_values_ignored(
        self, homekeep_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("HOMEKEEP_TIMEOUT", "soon")
        monkeypatch.setenv("HOMEKEEP_STORAGE", "cloud")

        config = HomekeepConfig.load()

        assert config.remote.timeout == 15.0
        assert config.storage.backend == "sqlite"


# ─────────── Derived values ───────────


class TestDerived:
    def test_health_url(self) -> None:
        remote = RemoteSettings(base_url="http://host/api/", health_path="/ping")
        assert remote.health_url == "http://host/api/ping"

    def test_to_dict_masks_api_key(self, tmp_path: Path) -> None:
        config = HomekeepConfig(data_dir=tmp_path, remote=RemoteSettings(api_key="secret"))

        data = config.to_dict()

        assert data["remote"]["api_key"] == "***"
        assert data["data_dir"] == str(tmp_path)
        assert data["storage"] == {"backend": "sqlite", "db_name": "queue.db"}

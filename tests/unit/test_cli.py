"""Tests for the hk CLI — commands run through Typer's test runner."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest
from typer.testing import CliRunner

from homekeep import __version__
from homekeep.cli.main import app
from homekeep.network.probe import ConnectivityProbe

if TYPE_CHECKING:
    from tests.conftest import FakeRemote

runner = CliRunner()


@pytest.fixture(autouse=True)
def homekeep_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the CLI at a temp data dir with an unreachable remote store."""
    for key in ("HOMEKEEP_API_KEY", "HOMEKEEP_TIMEOUT", "HOMEKEEP_STORAGE", "HOMEKEEP_DEBUG"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOMEKEEP_DIR", str(tmp_path))
    monkeypatch.setenv("HOMEKEEP_REMOTE_URL", "http://127.0.0.1:9/api")
    return tmp_path


def _probe_reports(monkeypatch: pytest.MonkeyPatch, reachable: bool) -> None:
    async def check_once(self: ConnectivityProbe) -> bool:
        self._monitor.report(reachable)
        return reachable

    monkeypatch.setattr(ConnectivityProbe, "check_once", check_once)


def _json(output: str) -> dict[str, Any]:
    return json.loads(output)


def _queue_offline(title: str) -> dict[str, Any]:
    result = runner.invoke(
        app, ["perform", "Task", "create", "-d", json.dumps({"title": title}), "--offline", "-j"]
    )
    assert result.exit_code == 0, result.output
    return _json(result.stdout)


# ─────────── Basics ───────────


class TestBasics:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"homekeep v{__version__}" in result.stdout

    def test_config_show_json(self, homekeep_env: Path) -> None:
        result = runner.invoke(app, ["config", "show", "--json"])

        assert result.exit_code == 0
        data = _json(result.stdout)
        assert data["remote"]["base_url"] == "http://127.0.0.1:9/api"
        assert data["data_dir"] == str(homekeep_env)
        assert (homekeep_env / "config.toml").exists()

    def test_config_show_masks_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOMEKEEP_API_KEY", "secret")

        result = runner.invoke(app, ["config", "show"])

        assert result.exit_code == 0
        assert "secret" not in result.stdout
        assert "api_key = ***" in result.stdout

    def test_config_path(self, homekeep_env: Path) -> None:
        result = runner.invoke(app, ["config", "path"])
        assert result.stdout.strip() == str(homekeep_env / "config.toml")


# ─────────── perform / pending ───────────


class TestPerform:
    def test_offline_create_is_queued(self) -> None:
        data = _queue_offline("Take out recycling")

        assert data["confirmed"] is False
        assert data["value"]["title"] == "Take out recycling"
        assert data["value"]["_pending"] is True
        assert data["message"].startswith("Create Task queued")

    def test_queued_change_survives_between_commands(self) -> None:
        queued = _queue_offline("A")

        result = runner.invoke(app, ["pending", "--json"])

        assert result.exit_code == 0
        data = _json(result.stdout)
        assert data["count"] == 1
        assert data["records"][0]["id"] == queued["record_id"]
        assert data["records"][0]["status"] == "pending"

    def test_pending_table(self) -> None:
        _queue_offline("Water plants")

        result = runner.invoke(app, ["pending"])

        assert result.exit_code == 0
        assert "Pending operations" in result.stdout

    def test_update_without_id_fails(self) -> None:
        result = runner.invoke(
            app, ["perform", "Task", "update", "-d", '{"title": "x"}', "--offline", "--json"]
        )

        assert result.exit_code == 1
        assert "requires an 'id'" in _json(result.stdout)["error"]

    def test_invalid_json_data(self) -> None:
        result = runner.invoke(app, ["perform", "Task", "create", "-d", "{not json"])
        assert result.exit_code == 2

    def test_unknown_action(self) -> None:
        result = runner.invoke(app, ["perform", "Task", "merge"])
        assert result.exit_code == 2

    def test_online_create_confirmed(
        self, monkeypatch: pytest.MonkeyPatch, remote: FakeRemote
    ) -> None:
        _probe_reports(monkeypatch, True)
        monkeypatch.setattr("homekeep.sync.context.HTTPEntityStore", lambda *a, **kw: remote)

        result = runner.invoke(
            app, ["perform", "Bill", "create", "-d", '{"title": "Water"}', "--json"]
        )

        assert result.exit_code == 0, result.output
        data = _json(result.stdout)
        assert data["confirmed"] is True
        assert data["value"]["id"] == "srv-1"
        assert remote.applied[0][:3] == ("create", "Bill", "srv-1")


# ─────────── status / sync ───────────


class TestStatusAndSync:
    def test_status_offline(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _probe_reports(monkeypatch, False)
        _queue_offline("A")
        _queue_offline("B")

        result = runner.invoke(app, ["status", "--json"])

        assert result.exit_code == 0
        data = _json(result.stdout)
        assert data["label"] == "offline"
        assert data["pending"] == 2

    def test_status_panel(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _probe_reports(monkeypatch, False)

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "offline" in result.stdout

    def test_sync_offline_keeps_queue(self, monkeypatch: pytest.MonkeyPatch) -> None:
        _probe_reports(monkeypatch, False)
        _queue_offline("A")

        result = runner.invoke(app, ["sync", "--json"])

        assert result.exit_code == 1
        data = _json(result.stdout)
        assert data["pending"] == 1
        assert "stay queued" in data["error"]

    def test_sync_online_drains(self, monkeypatch: pytest.MonkeyPatch, remote: FakeRemote) -> None:
        _queue_offline("A")
        _queue_offline("B")
        _probe_reports(monkeypatch, True)
        monkeypatch.setattr("homekeep.sync.context.HTTPEntityStore", lambda *a, **kw: remote)

        result = runner.invoke(app, ["sync", "--json"])

        assert result.exit_code == 0, result.output
        data = _json(result.stdout)
        assert data["succeeded"] == 2
        assert data["pending"] == 0
        assert data["message"] == "Synced 2 change(s), 0 rejected, 0 cancelled out"
        assert [c[3]["title"] for c in remote.applied] == ["A", "B"]


# ─────────── failed / retry / discard ───────────


class TestFailedRecords:
    def test_failed_empty(self) -> None:
        result = runner.invoke(app, ["failed", "--json"])

        assert result.exit_code == 0
        assert _json(result.stdout) == {"records": [], "count": 0}

    def test_failed_empty_table(self) -> None:
        result = runner.invoke(app, ["failed"])
        assert "No failed operations." in result.stdout

    @pytest.mark.parametrize("command", [["retry", "op-missing"], ["discard", "-f", "op-missing"]])
    def test_missing_record(self, command: list[str]) -> None:
        result = runner.invoke(app, [*command, "--json"])

        assert result.exit_code == 1
        assert _json(result.stdout)["error"] == "No operation op-missing"

    def test_discard_pending_refused(self) -> None:
        queued = _queue_offline("A")

        result = runner.invoke(app, ["discard", "-f", queued["record_id"], "--json"])

        assert result.exit_code == 1
        assert "Only failed records" in _json(result.stdout)["error"]

    def test_discard_asks_for_confirmation(self) -> None:
        result = runner.invoke(app, ["discard", "op-1"], input="n\n")

        assert result.exit_code == 1
        assert "Aborted" in result.output

    def test_rejected_record_retried_and_discarded(
        self, monkeypatch: pytest.MonkeyPatch, remote: FakeRemote
    ) -> None:
        first = _queue_offline("bad")
        second = _queue_offline("worse")
        remote.reject_titles.update({"bad", "worse"})
        _probe_reports(monkeypatch, True)
        monkeypatch.setattr("homekeep.sync.context.HTTPEntityStore", lambda *a, **kw: remote)

        synced = _json(runner.invoke(app, ["sync", "--json"]).stdout)
        assert synced["failed"] == 2

        listed = _json(runner.invoke(app, ["failed", "--json"]).stdout)
        assert [r["id"] for r in listed["records"]] == [first["record_id"], second["record_id"]]
        assert listed["records"][0]["last_error"]

        remote.reject_titles.clear()
        retried = runner.invoke(app, ["retry", first["record_id"], "--json"])
        assert retried.exit_code == 0
        discarded = runner.invoke(app, ["discard", "-f", second["record_id"], "--json"])
        assert discarded.exit_code == 0

        assert _json(runner.invoke(app, ["failed", "--json"]).stdout)["count"] == 0
        # retry only re-queues; the next sync replays it
        pending = _json(runner.invoke(app, ["pending", "--json"]).stdout)
        assert pending["count"] == 1

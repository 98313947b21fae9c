import pytest
from typer.testing import CliRunner

from lock_in.analytics import SessionHistory
from lock_in.cli import app
from lock_in.schema import SessionRecord
from lock_in.settings import settings
from lock_in.store import StateStore
from lock_in.utils.state import take_commands

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LOCK_IN_DATA_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "log_dir", tmp_path / "logs")


def test_focus_starts_session_and_notifies_daemon(tmp_path):
    result = runner.invoke(app, ["focus", "25"])

    assert result.exit_code == 0, result.output
    assert "Focus session started" in result.output
    session = StateStore(tmp_path / "state.json").load().session
    assert session.locked
    assert session.source == "manual"
    assert [c["command"] for c in take_commands()] == ["session_started"]


def test_focus_twice_fails():
    runner.invoke(app, ["focus", "25"])
    result = runner.invoke(app, ["focus", "25"])
    assert result.exit_code == 1
    assert "already active" in result.output


def test_focus_over_guardrail_fails():
    result = runner.invoke(app, ["focus", "5000"])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_unlock_with_pin(tmp_path):
    assert runner.invoke(app, ["set-pin", "4821"]).exit_code == 0
    runner.invoke(app, ["focus", "25"])

    assert runner.invoke(app, ["unlock", "--pin", "0000"]).exit_code == 1
    result = runner.invoke(app, ["unlock", "--pin", "4821"])
    assert result.exit_code == 0, result.output
    assert not StateStore(tmp_path / "state.json").load().session.locked


def test_whitelist_commands():
    assert runner.invoke(app, ["whitelist", "add", "firefox"]).exit_code == 0

    result = runner.invoke(app, ["whitelist", "add", "gnome-control-center"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["whitelist", "list"])
    assert "firefox" in result.output

    assert runner.invoke(app, ["whitelist", "default", "phone", "--off"]).exit_code == 0
    assert runner.invoke(app, ["whitelist", "remove", "firefox"]).exit_code == 0


def test_schedule_commands():
    result = runner.invoke(app, ["schedule", "add", "Deep Work", "9am", "90", "--repeat", "weekly", "--days", "mon,wed"])
    assert result.exit_code == 0, result.output
    assert "Mon, Wed" in result.output

    result = runner.invoke(app, ["schedule", "list"])
    assert "Deep Work" in result.output

    assert runner.invoke(app, ["schedule", "toggle", "1"]).exit_code == 0
    assert runner.invoke(app, ["schedule", "remove", "1"]).exit_code == 0
    assert runner.invoke(app, ["schedule", "remove", "1"]).exit_code == 1
    commands = take_commands()
    assert [c["command"] for c in commands] == ["reschedule", "reschedule", "disarm"]
    assert commands[-1]["schedule_id"] == 1


def test_schedule_add_rejects_bad_input():
    assert runner.invoke(app, ["schedule", "add", "X", "noon-ish", "30"]).exit_code == 1
    assert runner.invoke(app, ["schedule", "add", "X", "9am", "30", "--repeat", "weekly"]).exit_code == 1
    assert runner.invoke(app, ["schedule", "add", "X", "9am", "30", "--repeat", "weekly", "--days", "funday"]).exit_code == 1


def test_status_without_daemon():
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "Stopped" in result.output
    assert "No focus session currently active" in result.output


def seed_expired_session(tmp_path):
    with StateStore(tmp_path / "state.json").transaction() as state:
        state.session = SessionRecord(
            locked=True,
            start_time_ms=1000,
            end_time_ms=2000,
            target_duration_ms=1000,
            source="manual",
        )


def test_focus_replaces_expired_session(tmp_path):
    seed_expired_session(tmp_path)

    result = runner.invoke(app, ["focus", "25"])

    assert result.exit_code == 0, result.output
    assert StateStore(tmp_path / "state.json").load().session.start_time_ms > 2000
    ended = SessionHistory(tmp_path / "history.jsonl").recent_sessions()
    assert [s["completed"] for s in ended] == [True]


def test_unlock_after_expiry_records_completion(tmp_path):
    assert runner.invoke(app, ["set-pin", "4821"]).exit_code == 0
    seed_expired_session(tmp_path)

    result = runner.invoke(app, ["unlock", "--pin", "4821"])

    assert result.exit_code == 0
    assert "No focus session is active" in result.output
    assert not StateStore(tmp_path / "state.json").load().session.locked
    ended = SessionHistory(tmp_path / "history.jsonl").recent_sessions()
    assert [s["completed"] for s in ended] == [True]


def test_request_code_after_expiry(tmp_path):
    seed_expired_session(tmp_path)

    result = runner.invoke(app, ["request-code", "--to", "partner@example.com"])

    assert result.exit_code == 0
    assert "No focus session is active" in result.output

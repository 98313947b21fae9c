import json

from lock_in.analytics import SessionHistory
from lock_in.schema import SessionRecord


def session(start_ms, duration_ms, source="manual"):
    return SessionRecord(
        locked=True,
        start_time_ms=start_ms,
        end_time_ms=start_ms + duration_ms,
        target_duration_ms=duration_ms,
        source=source,
    )


def test_events_are_appended(tmp_path):
    history = SessionHistory(tmp_path / "history.jsonl")
    s = session(0, 60_000)
    history.session_started(s)
    history.blocked_attempt("steam")
    history.app_access("firefox")
    history.session_ended(s, completed=True, ended_at_ms=60_000)
    history.shutdown()

    lines = [json.loads(line) for line in (tmp_path / "history.jsonl").read_text().splitlines()]
    assert [line["event"] for line in lines] == ["session_started", "blocked_attempt", "app_access", "session_ended"]
    assert lines[1]["package_id"] == "steam"


def test_actual_duration_is_capped_at_planned_end(tmp_path):
    history = SessionHistory(tmp_path / "history.jsonl")
    s = session(0, 60_000)
    history.session_ended(s, completed=False, ended_at_ms=30_000).result()
    history.session_ended(s, completed=True, ended_at_ms=90_000).result()

    early, late = reversed(history.recent_sessions())
    assert early["actual_duration_ms"] == 30_000
    assert late["actual_duration_ms"] == 60_000
    history.shutdown()


def test_recent_sessions_newest_first(tmp_path):
    history = SessionHistory(tmp_path / "history.jsonl")
    for i in range(5):
        history.session_ended(session(i * 1000, 500, source=f"s{i}"), True, i * 1000 + 500)
    history.shutdown()

    assert [s["source"] for s in history.recent_sessions(limit=3)] == ["s4", "s3", "s2"]


def test_recent_sessions_without_file(tmp_path):
    assert SessionHistory(tmp_path / "missing.jsonl").recent_sessions() == []

from datetime import timedelta

import pytest

from lock_in.schema import OneTimeCode
from lock_in.session import EndReason, SessionAction
from lock_in.store import StateStore


def test_start_writes_full_record(sessions, store, clock, history):
    session = sessions.start(timedelta(minutes=30), source="manual")

    assert session.locked
    assert session.end_time_ms - session.start_time_ms == 30 * 60_000
    assert session.target_duration_ms == 30 * 60_000
    assert session.uptime_at_start_ms == clock.uptime_ms()
    assert not session.restarted
    assert session.ui_token

    persisted = store.load().session
    assert persisted == session
    assert history.of("started") == ["manual"]


def test_start_while_locked_is_rejected(sessions, history):
    first = sessions.start(timedelta(minutes=30))
    assert sessions.start(timedelta(minutes=10), source="schedule:Work") is None

    assert sessions.snapshot() == first
    assert history.of("started") == ["manual"]


@pytest.mark.parametrize("minutes", [0, -5, 721])
def test_start_rejects_bad_durations(sessions, minutes):
    with pytest.raises(ValueError):
        sessions.start(timedelta(minutes=minutes))
    assert not sessions.is_locked()


def test_check_idle_without_session(sessions):
    assert sessions.check_expiry_or_restart().action is SessionAction.IDLE


def test_check_continue_reports_remaining(sessions, clock):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=10)

    check = sessions.check_expiry_or_restart()
    assert check.action is SessionAction.CONTINUE
    assert check.remaining_ms == 20 * 60_000


def test_check_expired(sessions, clock):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=30)

    check = sessions.check_expiry_or_restart()
    assert check.action is SessionAction.FORCE_END
    assert check.reason is EndReason.EXPIRED


def test_reboot_detected_even_before_end_time(sessions, clock):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=1)
    clock.reboot()

    check = sessions.check_expiry_or_restart()
    assert check.action is SessionAction.FORCE_END
    assert check.reason is EndReason.REBOOT_DETECTED


def test_restarted_flag_forces_end(sessions):
    sessions.start(timedelta(minutes=30))
    assert sessions.mark_restarted()

    check = sessions.check_expiry_or_restart()
    assert check.reason is EndReason.RESTARTED


def test_mark_restarted_without_session(sessions):
    assert not sessions.mark_restarted()


def test_reconcile_records_completion_only_on_expiry(sessions, clock, history):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=31)
    sessions.reconcile()

    sessions.start(timedelta(minutes=30))
    clock.reboot()
    sessions.reconcile()

    assert history.of("ended") == [True, False]
    assert not sessions.is_locked()


def test_end_clears_outstanding_code(sessions, store):
    sessions.start(timedelta(minutes=30))
    with store.transaction() as state:
        state.otc = OneTimeCode(code="1234", generated_at_ms=0, expires_at_ms=1)

    assert sessions.end(completed=False)
    state = store.load()
    assert state.otc is None
    assert not state.session.locked


def test_end_without_session(sessions, history):
    assert not sessions.end(completed=True)
    assert history.of("ended") == []


def test_request_ui_ignores_stale_token(sessions, launcher):
    old = sessions.start(timedelta(minutes=5))
    sessions.end(completed=False)
    new = sessions.start(timedelta(minutes=5))

    assert not sessions.request_ui(old.ui_token, "old")
    assert sessions.request_ui(new.ui_token, "new")
    assert launcher.calls == [(new.ui_token, "new")]


def test_request_ui_survives_launcher_failure(sessions):
    def broken(session, reason):
        raise OSError("no display")

    sessions.launcher = broken
    session = sessions.start(timedelta(minutes=5))
    assert not sessions.request_ui(session.ui_token, "start")


def test_allowed_marker_is_short_lived(sessions, clock):
    assert not sessions.recently_allowed()
    sessions.stamp_allowed()
    assert sessions.recently_allowed()
    clock.advance(seconds=5)
    assert not sessions.recently_allowed()


def test_store_survives_reload(tmp_path, sessions):
    session = sessions.start(timedelta(minutes=15))
    assert StateStore(tmp_path / "state.json").load().session == session


def test_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert not StateStore(path).load().session.locked


def test_nested_transactions_share_snapshot(store):
    with store.transaction() as outer:
        outer.last_allowed_at_ms = 1
        with store.transaction() as inner:
            assert inner is outer
            inner.boot_time = 42.0

    state = store.load()
    assert state.last_allowed_at_ms == 1
    assert state.boot_time == 42.0


def test_failed_transaction_writes_nothing(store):
    with pytest.raises(RuntimeError):
        with store.transaction() as state:
            state.boot_time = 1.0
            raise RuntimeError("boom")
    assert store.load().boot_time is None

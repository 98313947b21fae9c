import json
from datetime import timedelta

import pytest

from lock_in import daemon as daemon_module
from lock_in.daemon import Command, FocusDaemon, ForegroundChanged, Tick
from lock_in.schema import ForegroundEvent, WakeupKind
from lock_in.settings import settings
from lock_in.utils import state as state_module
from lock_in.utils.state import send_command, take_commands

BOOT_TIME = 1_700_000_000.0


class IdleWatcher:
    def poll(self):
        return None


@pytest.fixture
def shown(monkeypatch):
    calls = []
    monkeypatch.setattr(daemon_module, "show_lock_screen", lambda session, reason: calls.append(reason))
    return calls


@pytest.fixture
def killed(monkeypatch):
    names = []

    def kill(process_names):
        names.extend(process_names)
        return set(process_names)

    monkeypatch.setattr(daemon_module, "kill_processes", kill)
    return names


@pytest.fixture
def focus_daemon(clock, notifications, shown, killed, monkeypatch):
    monkeypatch.setattr(state_module, "_last_written_state", None)
    d = FocusDaemon(
        config=settings,
        clock=clock,
        watcher=IdleWatcher(),
        notifier=lambda summary, body: notifications.append(summary),
        boot_time=lambda: BOOT_TIME,
    )
    yield d
    d.services.shutdown()


def drain(d):
    while not d.queue.empty():
        d.dispatch(d.queue.get_nowait())


def test_first_start_keeps_session_started_before_it(focus_daemon, clock):
    sessions = focus_daemon.services.sessions
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=1)

    focus_daemon.startup()
    drain(focus_daemon)

    assert sessions.is_locked()
    assert not sessions.snapshot().restarted
    assert focus_daemon.services.store.load().boot_time == BOOT_TIME


def test_first_start_after_reboot_ends_session(focus_daemon, clock):
    sessions = focus_daemon.services.sessions
    sessions.start(timedelta(minutes=30))
    clock.reboot()

    focus_daemon.startup()
    drain(focus_daemon)

    assert not sessions.is_locked()


def test_new_boot_runs_boot_recovery(focus_daemon):
    with focus_daemon.services.store.transaction() as state:
        state.boot_time = BOOT_TIME - 3600
    sessions = focus_daemon.services.sessions
    sessions.start(timedelta(minutes=30))

    focus_daemon.startup()
    drain(focus_daemon)

    assert not sessions.is_locked()
    assert focus_daemon.services.store.load().boot_time == BOOT_TIME


def test_restart_within_same_boot_keeps_session(focus_daemon):
    with focus_daemon.services.store.transaction() as state:
        state.boot_time = BOOT_TIME
    schedule = focus_daemon.services.schedules.add_schedule("Work", 9, 0, 60)
    focus_daemon.services.sessions.start(timedelta(minutes=30))

    focus_daemon.startup()
    drain(focus_daemon)

    assert focus_daemon.services.sessions.is_locked()
    assert (schedule.id, WakeupKind.FIRE) in focus_daemon.services.wakeups.pending()


def test_tick_ends_expired_session_and_writes_status(focus_daemon, clock, notifications):
    focus_daemon.services.sessions.start(timedelta(minutes=30))
    focus_daemon.dispatch(Tick())

    status = json.loads(settings.status_file.read_text())
    assert status["active_session"]["source"] == "manual"

    clock.advance(minutes=31)
    focus_daemon.dispatch(Tick())

    assert notifications == ["Focus session finished"]
    assert not focus_daemon.services.sessions.is_locked()
    assert json.loads(settings.status_file.read_text())["active_session"] is None


def test_session_started_command_shows_lock_screen(focus_daemon, shown):
    focus_daemon.services.sessions.start(timedelta(minutes=30))
    focus_daemon.dispatch(Command({"command": "session_started"}))
    assert shown == ["session started"]


def test_reschedule_command_picks_up_new_schedules(focus_daemon):
    schedule = focus_daemon.services.schedules.add_schedule("Evening", 20, 0, 60)
    focus_daemon.dispatch(Command({"command": "reschedule"}))
    assert (schedule.id, WakeupKind.FIRE) in focus_daemon.services.wakeups.pending()


def test_disarm_command_drops_removed_schedule(focus_daemon):
    schedules = focus_daemon.services.schedules
    kept = schedules.add_schedule("Evening", 20, 0, 60)
    removed = schedules.add_schedule("Morning", 7, 0, 60, pre_notify_minutes=10)
    focus_daemon.dispatch(Command({"command": "reschedule"}))

    schedules.remove(removed.id)
    focus_daemon.dispatch(Command({"command": "disarm", "schedule_id": removed.id}))

    assert {schedule_id for schedule_id, _ in focus_daemon.services.wakeups.pending()} == {kept.id}


def test_blocked_app_is_closed(focus_daemon, killed, notifications, shown):
    focus_daemon.services.sessions.start(timedelta(minutes=30))

    focus_daemon.dispatch(ForegroundChanged(ForegroundEvent("steam", 1.0)))

    assert killed == ["steam"]
    assert notifications == ["Blocked steam"]
    assert shown == ["blocked steam"]


def test_no_kill_when_disabled(focus_daemon, killed, monkeypatch):
    monkeypatch.setattr(settings, "kill_blocked_apps", False)
    focus_daemon.services.sessions.start(timedelta(minutes=30))

    focus_daemon.dispatch(ForegroundChanged(ForegroundEvent("steam", 1.0)))
    assert killed == []


def test_worker_processes_messages_in_order(focus_daemon, shown):
    focus_daemon.services.sessions.start(timedelta(minutes=30))

    focus_daemon.start_worker()
    focus_daemon.post(Command({"command": "session_started"}))
    focus_daemon.post(Command({"command": "bogus"}))
    focus_daemon.post(Tick())
    focus_daemon.stop_worker()

    assert shown == ["session started"]
    assert settings.status_file.exists()


def test_commands_round_trip_through_file():
    send_command("reschedule")
    send_command("session_started")

    assert [c["command"] for c in take_commands()] == ["reschedule", "session_started"]
    assert take_commands() == []

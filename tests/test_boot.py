from datetime import timedelta

from lock_in.boot import BootRecovery
from lock_in.schema import WakeupKind
from lock_in.session import EndReason, SessionAction


def test_reboot_during_session_ends_it_uncompleted(sessions, engine, history, clock):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=5)

    BootRecovery(sessions, engine).run()

    assert sessions.snapshot().restarted
    check = sessions.reconcile()
    assert check.action is SessionAction.FORCE_END
    assert check.reason is EndReason.RESTARTED
    assert history.of("ended") == [False]
    assert not sessions.is_locked()


def test_boot_rearms_enabled_schedules(sessions, engine, schedules, wakeups):
    work = schedules.add_schedule("Work", 9, 0, 60)
    schedules.add_schedule("Off", 10, 0, 60, enabled=False)

    assert BootRecovery(sessions, engine).run() == 1
    assert list(wakeups.pending()) == [(work.id, WakeupKind.FIRE)]
    assert not sessions.is_locked()


def test_boot_survives_reschedule_failure(sessions, engine, monkeypatch):
    sessions.start(timedelta(minutes=30))

    def broken():
        raise RuntimeError("schedule table unreadable")

    monkeypatch.setattr(engine, "reschedule_all", broken)
    assert BootRecovery(sessions, engine).run() == 0
    assert sessions.snapshot().restarted

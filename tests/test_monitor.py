from datetime import timedelta

from lock_in.schema import ForegroundEvent, RuleCategory


def event(package_id, at):
    return ForegroundEvent(package_id=package_id, timestamp=at)


def test_ignored_without_session(monitor, history, launcher):
    assert monitor.handle(event("steam", 0.0)) is None
    assert monitor.last_seen.package_id == "steam"
    assert history.events == []
    assert launcher.calls == []


def test_whitelisted_app_allowed_without_lock_screen(monitor, sessions, whitelist, history, launcher, clock):
    whitelist.add("firefox")
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=5)

    decision = monitor.handle(event("firefox", 300.0))

    assert decision.allowed
    assert launcher.calls == []
    assert history.of("access") == ["firefox"]
    assert sessions.recently_allowed()


def test_unlisted_app_blocked(monitor, sessions, history, launcher, kills):
    session = sessions.start(timedelta(minutes=30))

    decision = monitor.handle(event("steam", 10.0))

    assert not decision.allowed
    assert history.of("blocked") == ["steam"]
    assert launcher.calls == [(session.ui_token, "blocked steam")]
    assert kills == ["steam"]


def test_repeated_event_is_debounced(monitor, sessions, history):
    sessions.start(timedelta(minutes=30))

    assert monitor.handle(event("steam", 10.0)) is not None
    assert monitor.handle(event("steam", 11.0)) is None
    assert monitor.last_seen.timestamp == 11.0
    # Outside the window it is judged again
    assert monitor.handle(event("steam", 12.5)) is not None
    assert history.of("blocked") == ["steam", "steam"]


def test_switching_apps_is_not_debounced(monitor, sessions, whitelist, history):
    whitelist.add("firefox")
    sessions.start(timedelta(minutes=30))

    monitor.handle(event("steam", 10.0))
    monitor.handle(event("firefox", 10.5))
    monitor.handle(event("steam", 11.0))

    assert history.of("blocked") == ["steam", "steam"]
    assert history.of("access") == ["firefox"]


def test_own_window_is_not_recorded(monitor, sessions, history):
    sessions.start(timedelta(minutes=30))

    decision = monitor.handle(event("lock_in", 10.0))

    assert decision.category is RuleCategory.SELF
    assert history.events == [("started", "manual")]
    assert not sessions.recently_allowed()


def test_empty_desktop_right_after_allowed_app(monitor, sessions, whitelist, launcher, kills, clock):
    whitelist.add("firefox")
    session = sessions.start(timedelta(minutes=30))

    monitor.handle(event("firefox", 10.0))
    monitor.handle(event("", 10.5))
    assert launcher.calls == []

    clock.advance(seconds=10)
    monitor.handle(event("", 20.0))
    assert launcher.calls == [(session.ui_token, "no app in focus")]
    assert kills == []


def test_expired_session_stops_enforcement(monitor, sessions, history, clock, kills):
    sessions.start(timedelta(minutes=30))
    clock.advance(minutes=31)

    assert monitor.handle(event("steam", 10.0)) is None
    assert kills == []
    assert history.of("ended") == [True]

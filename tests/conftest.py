from datetime import datetime, timedelta

import pytest

from lock_in.authorization import WhitelistManager
from lock_in.engine import ScheduleEngine
from lock_in.monitor import ForegroundAppMonitor
from lock_in.schedules import ScheduleStore
from lock_in.session import SessionLifecycleManager
from lock_in.settings import settings
from lock_in.store import StateStore
from lock_in.unlock import UnlockProtocol

# Monday
START = datetime(2024, 1, 1, 8, 0)


class FakeClock:
    def __init__(self, now: datetime = START, uptime_ms: int = 3_600_000):
        self.current = now
        self.uptime = uptime_ms

    def now(self) -> datetime:
        return self.current

    def now_ms(self) -> int:
        return int(self.current.timestamp() * 1000)

    def uptime_ms(self) -> int:
        return self.uptime

    def advance(self, **kwargs) -> None:
        delta = timedelta(**kwargs)
        self.current += delta
        self.uptime += int(delta.total_seconds() * 1000)

    def reboot(self, uptime_ms: int = 30_000) -> None:
        self.uptime = uptime_ms


class RecordingHistory:
    def __init__(self):
        self.events = []

    def session_started(self, session):
        self.events.append(("started", session.source))

    def session_ended(self, session, completed, ended_at_ms):
        self.events.append(("ended", completed))

    def app_access(self, package_id):
        self.events.append(("access", package_id))

    def blocked_attempt(self, package_id):
        self.events.append(("blocked", package_id))

    def of(self, kind):
        return [value for event, value in self.events if event == kind]


class RecordingLauncher:
    def __init__(self):
        self.calls = []

    def __call__(self, session, reason):
        self.calls.append((session.ui_token, reason))


class FakeWakeups:
    def __init__(self):
        self.registered = {}

    def register(self, fire_at, payload):
        self.registered[payload.key] = (fire_at, payload)

    def cancel(self, schedule_id):
        for key in [k for k in self.registered if k[0] == schedule_id]:
            del self.registered[key]

    def cancel_all(self):
        self.registered.clear()

    def pending(self):
        return {key: fire_at for key, (fire_at, _) in self.registered.items()}


class FakeTransport:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent = []

    def send(self, code, destination):
        self.sent.append((code, destination))
        return self.succeed


@pytest.fixture(autouse=True)
def data_dir(tmp_path):
    original_data_dir = settings.data_dir
    settings.data_dir = tmp_path
    yield tmp_path
    settings.data_dir = original_data_dir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def history():
    return RecordingHistory()


@pytest.fixture
def launcher():
    return RecordingLauncher()


@pytest.fixture
def sessions(store, history, clock, launcher):
    return SessionLifecycleManager(
        store,
        history,
        clock=clock,
        launcher=launcher,
        max_session_minutes=720,
        allowed_marker_seconds=3.0,
    )


@pytest.fixture
def whitelist(store):
    return WhitelistManager(store, max_additional_apps=4)


@pytest.fixture
def schedules(tmp_path):
    return ScheduleStore(tmp_path / "schedules.json")


@pytest.fixture
def wakeups():
    return FakeWakeups()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def engine(schedules, sessions, wakeups, clock, notifications):
    return ScheduleEngine(
        schedules,
        sessions,
        wakeups,
        clock=clock,
        notifier=lambda summary, body: notifications.append((summary, body)),
    )


@pytest.fixture
def kills():
    return []


@pytest.fixture
def monitor(sessions, whitelist, history, kills):
    return ForegroundAppMonitor(
        sessions,
        whitelist,
        history,
        enforcer=kills.append,
        debounce_seconds=2.0,
        self_ids=["lock_in"],
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def unlock(store, sessions, transport, clock):
    return UnlockProtocol(store, sessions, transport=transport, clock=clock, validity=timedelta(hours=1))

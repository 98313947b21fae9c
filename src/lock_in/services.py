"""Wires the components together for the daemon and the CLI."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from lock_in.analytics import SessionHistory
from lock_in.authorization import WhitelistManager
from lock_in.boot import BootRecovery
from lock_in.clock import Clock, SystemClock
from lock_in.engine import ScheduleEngine, Wakeups
from lock_in.monitor import Enforcer, ForegroundAppMonitor
from lock_in.schedules import ScheduleStore
from lock_in.schema import WakeupPayload
from lock_in.session import SessionLifecycleManager, UiLauncher
from lock_in.settings import Settings, settings as default_settings
from lock_in.store import StateStore
from lock_in.transport import Transport, WebhookTransport
from lock_in.unlock import UnlockProtocol
from lock_in.wakeup import WakeupRegistry


@dataclass
class Services:
    store: StateStore
    analytics: SessionHistory
    sessions: SessionLifecycleManager
    whitelist: WhitelistManager
    schedules: ScheduleStore
    engine: ScheduleEngine
    monitor: ForegroundAppMonitor
    unlock: UnlockProtocol
    boot: BootRecovery
    wakeups: Wakeups

    def shutdown(self) -> None:
        self.engine.cancel_all()
        self.unlock.shutdown()
        self.analytics.shutdown()


def build_services(
    config: Settings | None = None,
    clock: Clock | None = None,
    transport: Transport | None = None,
    launcher: UiLauncher | None = None,
    notifier: Callable[[str, str], None] | None = None,
    enforcer: Enforcer | None = None,
    on_wakeup: Callable[[WakeupPayload], None] | None = None,
    wakeups: Wakeups | None = None,
) -> Services:
    """
    Builds every component against one state store.

    ``on_wakeup`` receives timer fires; by default they go straight to the
    schedule engine. The daemon passes a callback that queues them instead.
    """
    config = config or default_settings
    clock = clock or SystemClock()

    store = StateStore(config.state_file, config.lock_file)
    analytics = SessionHistory(config.history_file)
    sessions = SessionLifecycleManager(
        store,
        analytics,
        clock=clock,
        launcher=launcher,
        max_session_minutes=config.max_session_minutes,
        allowed_marker_seconds=config.allowed_marker_seconds,
    )
    whitelist = WhitelistManager(store, max_additional_apps=config.max_additional_apps)
    schedules = ScheduleStore(config.schedules_file)

    engine: ScheduleEngine | None = None

    def fire(payload: WakeupPayload) -> None:
        engine.handle(payload)

    if wakeups is None:
        wakeups = WakeupRegistry(on_wakeup or fire, clock=clock)
    engine = ScheduleEngine(schedules, sessions, wakeups, clock=clock, notifier=notifier)

    monitor = ForegroundAppMonitor(
        sessions,
        whitelist,
        analytics,
        enforcer=enforcer,
        debounce_seconds=config.debounce_seconds,
        self_ids=config.app_identities,
    )
    if transport is None and config.partner_webhook_url:
        transport = WebhookTransport(config.partner_webhook_url)
    unlock = UnlockProtocol(
        store,
        sessions,
        transport=transport,
        clock=clock,
        validity=timedelta(minutes=config.otc_validity_minutes),
    )

    return Services(
        store=store,
        analytics=analytics,
        sessions=sessions,
        whitelist=whitelist,
        schedules=schedules,
        engine=engine,
        monitor=monitor,
        unlock=unlock,
        boot=BootRecovery(sessions, engine),
        wakeups=wakeups,
    )

"""
The enforcing process.

Every trigger (boot, schedule wake-up, foreground change, CLI command,
periodic tick) is posted as a message to one queue and handled by a single
worker thread, so no two decisions ever interleave.
"""

import queue
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from loguru import logger
from rich.console import Console

from lock_in.clock import Clock, boot_marker
from lock_in.schema import ForegroundEvent, SessionRecord, WakeupKind, WakeupPayload
from lock_in.services import Services, build_services
from lock_in.session import EndReason, SessionAction
from lock_in.settings import Settings, settings as default_settings
from lock_in.utils.notifications import send_notification, show_lock_screen
from lock_in.utils.processes import ForegroundWatcher, kill_processes
from lock_in.utils.state import cleanup_state, take_commands, write_state
from lock_in.utils.time import format_clock_ms

console = Console()

# Two readings of the boot time within one boot can differ slightly
BOOT_TIME_TOLERANCE_SECONDS = 2.0


@dataclass(frozen=True)
class BootCompleted:
    boot_time: float


@dataclass(frozen=True)
class TimerFired:
    payload: WakeupPayload


@dataclass(frozen=True)
class ForegroundChanged:
    event: ForegroundEvent


@dataclass(frozen=True)
class Command:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class Stop:
    pass


Message = BootCompleted | TimerFired | ForegroundChanged | Command | Tick | Stop


class FocusDaemon:
    def __init__(
        self,
        config: Settings | None = None,
        clock: Clock | None = None,
        watcher: ForegroundWatcher | None = None,
        notifier: Callable[[str, str], None] = send_notification,
        services: Services | None = None,
        boot_time: Callable[[], float] = boot_marker,
    ):
        self.config = config or default_settings
        self.boot_time = boot_time
        self.watcher = watcher or ForegroundWatcher()
        self.notifier = notifier
        self.queue: queue.Queue = queue.Queue()
        self.services = services or build_services(
            self.config,
            clock=clock,
            launcher=self._launch_lock_screen,
            notifier=notifier,
            enforcer=self._enforce,
            on_wakeup=lambda payload: self.post(TimerFired(payload)),
        )
        self._lock_screen: subprocess.Popen | None = None
        self._lock_screen_token: str | None = None
        self._worker: threading.Thread | None = None

    def post(self, message: Message) -> None:
        self.queue.put(message)

    # Handlers, all run on the worker thread

    def dispatch(self, message: Message) -> None:
        if isinstance(message, BootCompleted):
            self._on_boot(message)
        elif isinstance(message, TimerFired):
            outcome = self.services.engine.handle(message.payload)
            if message.payload.kind is WakeupKind.FIRE:
                logger.info(f"Schedule {message.payload.name}: {outcome.value}")
        elif isinstance(message, ForegroundChanged):
            self._reconcile()
            self.services.monitor.handle(message.event)
        elif isinstance(message, Command):
            self._on_command(message.data)
        elif isinstance(message, Tick):
            self._on_tick()
        else:
            logger.warning(f"Unknown message: {message!r}")

    def _on_boot(self, message: BootCompleted) -> None:
        logger.info("New boot detected, running boot recovery")
        self.services.boot.run()
        with self.services.store.transaction() as state:
            state.boot_time = message.boot_time
        # Force-end the flagged session right away instead of on first use
        self.services.sessions.reconcile()

    def _on_command(self, data: dict) -> None:
        cmd = data.get("command")
        if cmd == "reschedule":
            logger.info("Received command to reschedule")
            self.services.schedules.reload()
            self.services.engine.reschedule_all()
        elif cmd == "disarm":
            schedule_id = int(data["schedule_id"])
            logger.info(f"Received command to disarm schedule {schedule_id}")
            self.services.schedules.reload()
            self.services.engine.disarm(schedule_id)
        elif cmd == "session_started":
            logger.info("Received command to show the lock screen")
            sessions = self.services.sessions
            sessions.request_ui(sessions.current_token(), "session started")
        else:
            logger.warning(f"Ignoring unknown command: {cmd}")

    def _reconcile(self) -> None:
        check = self.services.sessions.reconcile()
        if check.action is SessionAction.FORCE_END and check.reason is EndReason.EXPIRED:
            self.notifier("Focus session finished", "Well done! All apps are available again.")

    def _on_tick(self) -> None:
        self._reconcile()
        self._write_status()

    def _write_status(self) -> None:
        session = self.services.sessions.snapshot()
        active = None
        if session.locked:
            active = {
                "source": session.source,
                "end_time": format_clock_ms(session.end_time_ms),
                "end_time_ms": session.end_time_ms,
                "duration_mins": session.target_duration_ms // 60_000,
            }
        upcoming = []
        for (schedule_id, kind), fire_at in sorted(self.services.wakeups.pending().items(), key=lambda i: i[1]):
            if kind is WakeupKind.FIRE:
                upcoming.append({"schedule_id": schedule_id, "fire_at": fire_at.isoformat()})
        write_state(active, upcoming)

    # Side effects handed to the components

    def _launch_lock_screen(self, session: SessionRecord, reason: str) -> None:
        if (
            self._lock_screen is not None
            and self._lock_screen.poll() is None
            and self._lock_screen_token == session.ui_token
        ):
            logger.debug(f"Lock screen already open ({reason})")
            return
        self._lock_screen = show_lock_screen(session, reason)
        self._lock_screen_token = session.ui_token

    def _enforce(self, package_id: str) -> None:
        if not self.config.kill_blocked_apps:
            return
        for name in kill_processes([package_id]):
            self.notifier(f"Blocked {name}", "App closed during focus session.")

    # Lifecycle

    def _work(self) -> None:
        while True:
            message = self.queue.get()
            if isinstance(message, Stop):
                break
            try:
                self.dispatch(message)
            except Exception:
                logger.exception(f"Failed to handle {type(message).__name__}")

    def start_worker(self) -> None:
        self._worker = threading.Thread(target=self._work, name="decision-loop", daemon=True)
        self._worker.start()

    def stop_worker(self) -> None:
        if self._worker is not None:
            self.post(Stop())
            self._worker.join(timeout=10)
            self._worker = None

    def startup(self) -> None:
        """Queues boot recovery on a new boot, otherwise just re-arms schedules."""
        current = self.boot_time()
        stored = self.services.store.load().boot_time
        if stored is None:
            # First run against this data dir. Nothing to compare with, the
            # uptime check in reconcile still catches a real reboot.
            with self.services.store.transaction() as state:
                state.boot_time = current
            self.post(Command({"command": "reschedule"}))
        elif abs(current - stored) > BOOT_TIME_TOLERANCE_SECONDS:
            self.post(BootCompleted(current))
        else:
            self.post(Command({"command": "reschedule"}))
        self.post(Tick())

    def run(self) -> None:
        """Main loop for the focus daemon."""
        console.print("[bold green]Lock In daemon started...[/bold green]")
        console.print(f"Data directory: [cyan]{self.config.data_dir}[/cyan]")
        console.print("Watching schedules, commands and the focused window. Press Ctrl+C to stop.")

        self.start_worker()
        self.startup()
        last_tick = time.monotonic()
        try:
            while True:
                for command in take_commands():
                    self.post(Command(command))

                event = self.watcher.poll()
                if event is not None:
                    self.post(ForegroundChanged(event))

                if time.monotonic() - last_tick >= self.config.tick_seconds:
                    self.post(Tick())
                    last_tick = time.monotonic()

                time.sleep(self.config.poll_interval_seconds)
        finally:
            console.print("\n[yellow]Stopping daemon...[/yellow]")
            self.stop_worker()
            self.services.shutdown()
            cleanup_state()


def run_daemon():
    FocusDaemon().run()

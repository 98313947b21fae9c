"""Focus session lifecycle: start, end, expiry and reboot reconciliation."""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from loguru import logger

from lock_in.analytics import SessionHistory
from lock_in.clock import Clock, SystemClock
from lock_in.schema import SessionRecord
from lock_in.settings import settings
from lock_in.store import StateStore

UiLauncher = Callable[[SessionRecord, str], None]


class SessionAction(str, Enum):
    IDLE = "idle"
    CONTINUE = "continue"
    FORCE_END = "force_end"


class EndReason(str, Enum):
    RESTARTED = "restarted"
    REBOOT_DETECTED = "reboot_detected"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ExpiryCheck:
    action: SessionAction
    reason: EndReason | None = None
    remaining_ms: int = 0


class SessionLifecycleManager:
    """Owns the persisted ``SessionRecord``.

    Every mutation runs inside one store transaction and replaces the record
    as a whole, so concurrent readers never see a half-started session.
    """

    def __init__(
        self,
        store: StateStore,
        analytics: SessionHistory,
        clock: Clock | None = None,
        launcher: UiLauncher | None = None,
        max_session_minutes: int | None = None,
        allowed_marker_seconds: float | None = None,
    ):
        self.store = store
        self.analytics = analytics
        self.clock = clock or SystemClock()
        self.launcher = launcher
        self.max_session_minutes = max_session_minutes or settings.max_session_minutes
        self.allowed_marker_ms = int(
            (allowed_marker_seconds if allowed_marker_seconds is not None else settings.allowed_marker_seconds)
            * 1000
        )

    def snapshot(self) -> SessionRecord:
        return self.store.load().session

    def is_locked(self) -> bool:
        return self.snapshot().locked

    def start(self, duration: timedelta, source: str = "manual") -> SessionRecord | None:
        """Starts a session. Returns None when one is already running."""
        duration_ms = int(duration.total_seconds() * 1000)
        if duration_ms <= 0:
            raise ValueError("Session duration must be positive.")
        if duration_ms > self.max_session_minutes * 60_000:
            raise ValueError(
                f"Session duration ({duration_ms // 60_000}m) exceeds the maximum "
                f"allowed ({self.max_session_minutes}m)."
            )

        with self.store.transaction() as state:
            if state.session.locked:
                logger.warning(f"Session already active, rejecting start from {source}")
                return None
            now_ms = self.clock.now_ms()
            state.session = SessionRecord(
                locked=True,
                start_time_ms=now_ms,
                end_time_ms=now_ms + duration_ms,
                target_duration_ms=duration_ms,
                uptime_at_start_ms=self.clock.uptime_ms(),
                restarted=False,
                source=source,
                ui_token=uuid.uuid4().hex,
            )
            session = state.session

        logger.info(f"Focus session started ({duration_ms // 60_000}m, source={source})")
        self.analytics.session_started(session)
        return session

    def end(self, completed: bool) -> bool:
        """Clears the session and any outstanding one-time code."""
        with self.store.transaction() as state:
            previous = state.session
            state.otc = None
            if not previous.locked:
                return False
            state.session = SessionRecord()

        ended_at = self.clock.now_ms()
        logger.info(f"Focus session ended (completed={completed}, source={previous.source})")
        self.analytics.session_ended(previous, completed, ended_at)
        return True

    def check_expiry_or_restart(self) -> ExpiryCheck:
        session = self.snapshot()
        if not session.locked:
            return ExpiryCheck(SessionAction.IDLE)
        if session.restarted:
            return ExpiryCheck(SessionAction.FORCE_END, EndReason.RESTARTED)
        # The uptime counter only grows within one boot; a smaller value now
        # means the device rebooted after the session started.
        if session.uptime_at_start_ms > self.clock.uptime_ms():
            return ExpiryCheck(SessionAction.FORCE_END, EndReason.REBOOT_DETECTED)
        now_ms = self.clock.now_ms()
        if now_ms >= session.end_time_ms:
            return ExpiryCheck(SessionAction.FORCE_END, EndReason.EXPIRED)
        return ExpiryCheck(SessionAction.CONTINUE, remaining_ms=session.end_time_ms - now_ms)

    def reconcile(self) -> ExpiryCheck:
        """Runs the expiry check and clears a stale session.

        Only a natural expiry counts as completed.
        """
        check = self.check_expiry_or_restart()
        if check.action is SessionAction.FORCE_END:
            logger.info(f"Force-ending session: {check.reason.value}")
            self.end(completed=check.reason is EndReason.EXPIRED)
        return check

    def mark_restarted(self) -> bool:
        with self.store.transaction() as state:
            if not state.session.locked:
                return False
            state.session = state.session.model_copy(update={"restarted": True})
        return True

    def current_token(self) -> str | None:
        session = self.snapshot()
        return session.ui_token if session.locked else None

    def request_ui(self, token: str | None, reason: str) -> bool:
        """Launches the lock screen on behalf of the current token holder."""
        session = self.snapshot()
        if not session.locked or token is None or token != session.ui_token:
            logger.debug(f"Ignoring lock screen request with stale token ({reason})")
            return False
        if self.launcher is None:
            return False
        try:
            self.launcher(session, reason)
        except Exception as e:
            logger.error(f"Failed to launch lock screen: {e}")
            return False
        return True

    def stamp_allowed(self) -> None:
        with self.store.transaction() as state:
            state.last_allowed_at_ms = self.clock.now_ms()

    def recently_allowed(self) -> bool:
        marker = self.store.load().last_allowed_at_ms
        if marker is None:
            return False
        return 0 <= self.clock.now_ms() - marker < self.allowed_marker_ms

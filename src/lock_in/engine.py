"""Fire-time computation and wake-up handling for schedules."""

from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum
from typing import Protocol

from loguru import logger

from lock_in.clock import Clock, SystemClock
from lock_in.schedules import ScheduleStore
from lock_in.schema import RepeatType, Schedule, WakeupKind, WakeupPayload
from lock_in.session import SessionAction, SessionLifecycleManager
from lock_in.settings import settings
from lock_in.utils.time import format_duration_seconds


class Wakeups(Protocol):
    def register(self, fire_at: datetime, payload: WakeupPayload) -> None: ...

    def cancel(self, schedule_id: int) -> None: ...

    def cancel_all(self) -> None: ...

    def pending(self) -> dict[tuple[int, WakeupKind], datetime]: ...


class FireOutcome(str, Enum):
    STARTED = "started"
    SKIPPED_ACTIVE_SESSION = "skipped_active_session"
    SKIPPED_STALE = "skipped_stale"
    REJECTED = "rejected"


def next_fire_time(schedule: Schedule, now: datetime) -> datetime | None:
    """
    Returns the next moment the schedule should start a session, or None.

    ONCE only fires today; a passed ONCE schedule is considered missed.
    WEEKLY scans at most one week ahead; an empty day set never fires.
    """
    today = now.replace(
        hour=schedule.start_hour, minute=schedule.start_minute, second=0, microsecond=0
    )

    if schedule.repeat_type is RepeatType.ONCE:
        return today if today > now else None

    if schedule.repeat_type is RepeatType.DAILY:
        return today if today > now else today + timedelta(days=1)

    if not schedule.repeat_days:
        return None
    if now.weekday() in schedule.repeat_days and today > now:
        return today
    for offset in range(1, 8):
        candidate = today + timedelta(days=offset)
        if candidate.weekday() in schedule.repeat_days:
            return candidate
    return None


class ScheduleEngine:
    def __init__(
        self,
        schedules: ScheduleStore,
        sessions: SessionLifecycleManager,
        wakeups: Wakeups,
        clock: Clock | None = None,
        notifier: Callable[[str, str], None] | None = None,
    ):
        self.schedules = schedules
        self.sessions = sessions
        self.wakeups = wakeups
        self.clock = clock or SystemClock()
        self.notifier = notifier

    def arm(self, schedule: Schedule, after: datetime | None = None) -> datetime | None:
        """Registers the next wake-up for a schedule. Returns the fire time.

        ``after`` moves the search start forward; re-arming right after a
        fire uses it so a timer that woke a moment early cannot fire twice.
        """
        if not schedule.enabled:
            logger.debug(f"Schedule {schedule.name} is disabled, skipping")
            return None

        now = self.clock.now()
        fire_at = next_fire_time(schedule, max(now, after) if after else now)
        if fire_at is None:
            logger.debug(f"Schedule {schedule.name} has no next trigger time")
            return None

        payload = WakeupPayload(
            schedule_id=schedule.id,
            name=schedule.name,
            duration_minutes=schedule.focus_duration_minutes,
        )
        self.wakeups.register(fire_at, payload)

        if schedule.pre_notify_minutes > 0:
            notify_at = fire_at - timedelta(minutes=schedule.pre_notify_minutes)
            if notify_at > now:
                self.wakeups.register(
                    notify_at,
                    WakeupPayload(
                        schedule_id=schedule.id,
                        name=schedule.name,
                        duration_minutes=schedule.focus_duration_minutes,
                        kind=WakeupKind.PRE_NOTIFY,
                        pre_notify_minutes=schedule.pre_notify_minutes,
                    ),
                )

        logger.info(f"Scheduled {schedule.name} for {fire_at:%a %Y-%m-%d %H:%M}")
        return fire_at

    def disarm(self, schedule_id: int) -> None:
        self.wakeups.cancel(schedule_id)

    def handle(self, payload: WakeupPayload) -> FireOutcome | None:
        if payload.kind is WakeupKind.PRE_NOTIFY:
            self.on_pre_notify(payload)
            return None
        return self.on_fire(payload)

    def on_fire(self, payload: WakeupPayload) -> FireOutcome:
        logger.info(f"Schedule trigger received: {payload.name} ({payload.duration_minutes}m)")

        # Never stack two sessions
        check = self.sessions.reconcile()
        if check.action is SessionAction.CONTINUE:
            logger.warning(f"Focus session already active, skipping scheduled session {payload.name}")
            schedule = self.schedules.get(payload.schedule_id)
            if schedule is not None and schedule.enabled:
                self._rearm_or_disable(schedule)
            return FireOutcome.SKIPPED_ACTIVE_SESSION

        # The wake-up may be stale: the schedule can be deleted or disabled
        # after it was armed, and fires can be deferred arbitrarily.
        schedule = self.schedules.get(payload.schedule_id)
        if schedule is None or not schedule.enabled:
            logger.warning(f"Schedule {payload.schedule_id} no longer exists or is disabled, skipping")
            return FireOutcome.SKIPPED_STALE

        try:
            session = self.sessions.start(
                timedelta(minutes=payload.duration_minutes), source=f"schedule:{payload.name}"
            )
        except ValueError as e:
            logger.error(f"Schedule {payload.name} cannot start a session: {e}")
            session = None

        self._rearm_or_disable(schedule)
        if session is None:
            return FireOutcome.REJECTED

        self.sessions.request_ui(session.ui_token, f"schedule {payload.name} started")
        return FireOutcome.STARTED

    def on_pre_notify(self, payload: WakeupPayload) -> None:
        schedule = self.schedules.get(payload.schedule_id)
        if schedule is None or not schedule.enabled:
            return
        if self.notifier is None:
            return
        summary = settings.notify_summary.format(name=payload.name, minutes=payload.pre_notify_minutes)
        body = settings.notify_body.format(
            name=payload.name,
            minutes=payload.pre_notify_minutes,
            duration=format_duration_seconds(payload.duration_minutes * 60),
        )
        self.notifier(summary, body)

    def cancel_all(self) -> None:
        self.wakeups.cancel_all()

    def reschedule_all(self) -> int:
        """Cancels every wake-up and re-arms all enabled schedules.

        A schedule that fails to arm is logged and the rest still proceed.
        """
        self.cancel_all()
        armed = 0
        enabled = self.schedules.enabled()
        logger.info(f"Scheduling {len(enabled)} enabled schedules")
        for schedule in enabled:
            try:
                if self.arm(schedule) is not None:
                    armed += 1
            except Exception:
                logger.exception(f"Failed to schedule {schedule.name}")
        return armed

    def _rearm_or_disable(self, schedule: Schedule) -> None:
        if schedule.repeat_type is RepeatType.ONCE:
            self.schedules.set_enabled(schedule.id, False)
            logger.info(f"Disabled one-time schedule: {schedule.name}")
            return
        try:
            self.arm(schedule, after=self.clock.now() + timedelta(minutes=1))
        except Exception:
            logger.exception(f"Failed to re-arm {schedule.name}")

import json
import os
import threading
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from lock_in.schema import WEEKEND, WORKDAYS, RepeatType, Schedule, Weekday
from lock_in.settings import settings

QUICK_TEMPLATES = [
    ("Morning Focus", 6, 0, 180, RepeatType.WEEKLY, WORKDAYS),
    ("Work Hours", 9, 0, 480, RepeatType.WEEKLY, WORKDAYS),
    ("Study Session", 19, 0, 180, RepeatType.DAILY, frozenset()),
    ("Weekend Focus", 10, 0, 240, RepeatType.WEEKLY, WEEKEND),
]


class ScheduleStore:
    """Manages persistence and retrieval of focus schedules."""

    def __init__(self, path: Path | None = None):
        self.schedules_file = path or settings.schedules_file
        self.schedules: list[Schedule] = []
        self._last_schedules_mtime: float | None = None
        self._lock = threading.RLock()
        self._load_schedules()

    def _load_schedules(self):
        if not self.schedules_file.exists():
            self._last_schedules_mtime = None
            self.schedules = []
            return

        current_mtime = self.schedules_file.stat().st_mtime
        if self._last_schedules_mtime == current_mtime:
            # File hasn't changed, no need to reload
            return

        try:
            with open(self.schedules_file) as f:
                rows = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load schedules: {e}")
            return

        schedules = []
        for row in rows:
            try:
                schedules.append(Schedule.from_row(row))
            except (ValidationError, TypeError) as e:
                logger.error(f"Skipping unreadable schedule row {row!r}: {e}")
        self.schedules = schedules
        self._last_schedules_mtime = current_mtime

    def reload(self):
        with self._lock:
            self._load_schedules()

    def save_schedules(self):
        """Saves current schedules to JSON."""
        try:
            self.schedules_file.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.schedules_file.with_suffix(".json.tmp")
            with open(tmp_path, "w") as f:
                json.dump([s.to_row() for s in self.schedules], f, indent=4)
            os.replace(tmp_path, self.schedules_file)
            self._last_schedules_mtime = self.schedules_file.stat().st_mtime
        except OSError as e:
            logger.error(f"Failed to save schedules: {e}")

    def add_schedule(
        self,
        name: str,
        start_hour: int,
        start_minute: int,
        focus_duration_minutes: int,
        repeat_type: RepeatType = RepeatType.DAILY,
        repeat_days: frozenset[Weekday] | None = None,
        pre_notify_minutes: int = 0,
        enabled: bool = True,
    ) -> Schedule:
        """Adds a new schedule and saves it."""
        repeat_days = frozenset(repeat_days or ())
        if repeat_type is RepeatType.WEEKLY and not repeat_days:
            raise ValueError("Weekly schedules need at least one day.")
        if repeat_type is not RepeatType.WEEKLY:
            repeat_days = frozenset()

        with self._lock:
            self._load_schedules()
            schedule = Schedule(
                id=max((s.id for s in self.schedules), default=0) + 1,
                name=name,
                start_hour=start_hour,
                start_minute=start_minute,
                focus_duration_minutes=focus_duration_minutes,
                repeat_type=repeat_type,
                repeat_days=repeat_days,
                pre_notify_minutes=pre_notify_minutes,
                enabled=enabled,
            )
            self.schedules.append(schedule)
            self.save_schedules()
        logger.info(f"Created schedule: {name} (id={schedule.id})")
        return schedule

    def add_templates(self) -> list[Schedule]:
        """Creates the quick template schedules that are not present yet."""
        existing = {s.name for s in self.list_all()}
        created = []
        for name, hour, minute, duration, repeat_type, days in QUICK_TEMPLATES:
            if name in existing:
                continue
            created.append(self.add_schedule(name, hour, minute, duration, repeat_type, days))
        return created

    def get(self, schedule_id: int) -> Schedule | None:
        with self._lock:
            self._load_schedules()
            return next((s for s in self.schedules if s.id == schedule_id), None)

    def list_all(self) -> list[Schedule]:
        with self._lock:
            self._load_schedules()
            return sorted(self.schedules, key=lambda s: (s.start_hour, s.start_minute, s.id))

    def enabled(self) -> list[Schedule]:
        return [s for s in self.list_all() if s.enabled]

    def update(self, schedule: Schedule) -> bool:
        """Updates an existing schedule."""
        with self._lock:
            self._load_schedules()
            for i, s in enumerate(self.schedules):
                if s.id == schedule.id:
                    self.schedules[i] = schedule
                    self.save_schedules()
                    return True
        return False

    def remove(self, schedule_id: int) -> bool:
        """Removes a schedule by ID."""
        with self._lock:
            self._load_schedules()
            remaining = [s for s in self.schedules if s.id != schedule_id]
            if len(remaining) == len(self.schedules):
                return False
            self.schedules = remaining
            self.save_schedules()
        logger.info(f"Deleted schedule id={schedule_id}")
        return True

    def set_enabled(self, schedule_id: int, enabled: bool) -> Schedule | None:
        with self._lock:
            schedule = self.get(schedule_id)
            if schedule is None:
                return None
            updated = schedule.model_copy(update={"enabled": enabled})
            self.update(updated)
        return updated

    def toggle(self, schedule_id: int) -> Schedule | None:
        with self._lock:
            schedule = self.get(schedule_id)
            if schedule is None:
                return None
            return self.set_enabled(schedule_id, not schedule.enabled)

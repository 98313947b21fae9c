"""In-process wake-up timers keyed by schedule id.

Registrations live only as long as the daemon process, the same way OS
alarms do not outlive a reboot; the boot/startup path re-arms them.
"""

import threading
from collections.abc import Callable
from datetime import datetime

from loguru import logger

from lock_in.clock import Clock, SystemClock
from lock_in.schema import WakeupKind, WakeupPayload


class WakeupRegistry:
    def __init__(self, on_fire: Callable[[WakeupPayload], None], clock: Clock | None = None):
        self.on_fire = on_fire
        self.clock = clock or SystemClock()
        self._timers: dict[tuple[int, WakeupKind], tuple[datetime, threading.Timer]] = {}
        self._lock = threading.Lock()

    def register(self, fire_at: datetime, payload: WakeupPayload) -> None:
        """Registers (or replaces) the wake-up for ``payload.key``."""
        delay = max(0.0, (fire_at - self.clock.now()).total_seconds())
        timer = threading.Timer(delay, self._fire, args=(payload,))
        timer.daemon = True
        with self._lock:
            previous = self._timers.pop(payload.key, None)
            if previous:
                previous[1].cancel()
            self._timers[payload.key] = (fire_at, timer)
        timer.start()
        logger.debug(f"Registered {payload.kind.value} wake-up for schedule {payload.schedule_id} at {fire_at}")

    def cancel(self, schedule_id: int) -> None:
        with self._lock:
            for key in [k for k in self._timers if k[0] == schedule_id]:
                _, timer = self._timers.pop(key)
                timer.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            for _, timer in self._timers.values():
                timer.cancel()
            self._timers.clear()

    def pending(self) -> dict[tuple[int, WakeupKind], datetime]:
        with self._lock:
            return {key: fire_at for key, (fire_at, _) in self._timers.items()}

    def _fire(self, payload: WakeupPayload) -> None:
        with self._lock:
            entry = self._timers.get(payload.key)
            if entry is not None and entry[1] is threading.current_thread():
                del self._timers[payload.key]
        try:
            self.on_fire(payload)
        except Exception:
            logger.exception(f"Wake-up callback failed for schedule {payload.schedule_id}")

"""Wall clock and monotonic uptime sources."""

import time
from datetime import datetime
from typing import Protocol

import psutil


class Clock(Protocol):
    def now(self) -> datetime: ...

    def now_ms(self) -> int: ...

    def uptime_ms(self) -> int: ...


class SystemClock:
    """Reads the host clocks.

    ``uptime_ms`` uses CLOCK_BOOTTIME where the platform has it, which keeps
    counting through suspend and restarts from zero at boot. Elsewhere the
    plain monotonic clock is the closest equivalent.
    """

    def now(self) -> datetime:
        return datetime.now()

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def uptime_ms(self) -> int:
        clock_id = getattr(time, "CLOCK_BOOTTIME", None)
        if clock_id is not None:
            return int(time.clock_gettime(clock_id) * 1000)
        return int(time.monotonic() * 1000)


def boot_marker() -> float:
    """Returns the boot timestamp of the running system."""
    return psutil.boot_time()

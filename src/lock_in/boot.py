"""Runs once per system boot, before anything else touches the session."""

from loguru import logger

from lock_in.engine import ScheduleEngine
from lock_in.session import SessionLifecycleManager


class BootRecovery:
    def __init__(self, sessions: SessionLifecycleManager, engine: ScheduleEngine):
        self.sessions = sessions
        self.engine = engine

    def run(self) -> int:
        """Flags a session that survived the reboot and re-arms every schedule.

        Returns the number of schedules armed. Never raises.
        """
        try:
            if self.sessions.mark_restarted():
                logger.warning("Focus session was active during shutdown, marking it restarted")
        except Exception:
            logger.exception("Failed to flag the interrupted session")

        try:
            armed = self.engine.reschedule_all()
        except Exception:
            logger.exception("Failed to reschedule after boot")
            return 0
        logger.info(f"Boot recovery complete, {armed} schedules armed")
        return armed

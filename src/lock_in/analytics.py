"""Session outcome log.

Writes happen on a single background worker so the entry point that
triggered them (a timer, a foreground event) returns immediately.
"""

import json
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from pathlib import Path

from loguru import logger

from lock_in.schema import SessionRecord
from lock_in.settings import settings


class SessionHistory:
    """Appends session and access events to a JSON-lines file."""

    def __init__(self, path: Path | None = None):
        self.path = path or settings.history_file
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="analytics")

    def session_started(self, session: SessionRecord) -> Future:
        return self._submit(
            {
                "event": "session_started",
                "start_time_ms": session.start_time_ms,
                "target_duration_ms": session.target_duration_ms,
                "source": session.source,
            }
        )

    def session_ended(self, session: SessionRecord, completed: bool, ended_at_ms: int) -> Future:
        actual = max(0, min(ended_at_ms, session.end_time_ms) - session.start_time_ms)
        return self._submit(
            {
                "event": "session_ended",
                "start_time_ms": session.start_time_ms,
                "end_time_ms": ended_at_ms,
                "target_duration_ms": session.target_duration_ms,
                "actual_duration_ms": actual,
                "completed": completed,
                "source": session.source,
            }
        )

    def app_access(self, package_id: str) -> Future:
        return self._submit({"event": "app_access", "package_id": package_id})

    def blocked_attempt(self, package_id: str) -> Future:
        return self._submit({"event": "blocked_attempt", "package_id": package_id})

    def recent_sessions(self, limit: int = 10) -> list[dict]:
        """Returns the last ``limit`` finished sessions, newest first."""
        if not self.path.exists():
            return []
        sessions = []
        with open(self.path) as f:
            for line in f:
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if entry.get("event") == "session_ended":
                    sessions.append(entry)
        return list(reversed(sessions[-limit:]))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _submit(self, entry: dict) -> Future:
        entry["recorded_at"] = datetime.now().isoformat()
        return self._executor.submit(self._append, entry)

    def _append(self, entry: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.error(f"Failed to record {entry['event']}: {e}")

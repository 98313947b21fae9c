"""Durable state shared by every entry point.

The whole ``PersistedState`` is written as one JSON document through a temp
file and ``os.replace``, so readers only ever see complete snapshots.
Read-modify-write sequences go through ``transaction()``, which serializes
writers inside the process (RLock) and across processes (flock).
"""

import fcntl
import json
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from lock_in.schema import PersistedState
from lock_in.settings import settings


class StateStore:
    def __init__(self, path: Path | None = None, lock_path: Path | None = None):
        self.path = path or settings.state_file
        self.lock_path = lock_path or self.path.with_suffix(".lock")
        self._lock = threading.RLock()
        self._current: PersistedState | None = None

    def load(self) -> PersistedState:
        """Returns the last persisted snapshot (defaults when missing or unreadable)."""
        if not self.path.exists():
            return PersistedState()
        try:
            with open(self.path) as f:
                return PersistedState.model_validate(json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Failed to read state file {self.path}: {e}")
            return PersistedState()

    def save(self, state: PersistedState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state.model_dump(mode="json"), f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @contextmanager
    def transaction(self) -> Iterator[PersistedState]:
        """Yields the current state; writes it back if the block exits cleanly.

        Nested transactions on the same thread share the outer snapshot and
        only the outermost block writes.
        """
        with self._lock:
            if self._current is not None:
                yield self._current
                return

            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    self._current = self.load()
                    yield self._current
                    self.save(self._current)
                finally:
                    self._current = None
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

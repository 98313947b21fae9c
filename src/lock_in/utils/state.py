import json
import os
from datetime import datetime
from pathlib import Path

from loguru import logger

from lock_in.settings import settings


_last_written_state: dict | None = None


def write_state(active_session: dict | None = None, next_schedules: list[dict] | None = None):
    """Writes the current daemon status to a file for the 'status' command."""
    global _last_written_state
    state = {
        "pid": os.getpid(),
        "active_session": active_session,
        "next_schedules": next_schedules or [],
    }

    if state == _last_written_state:
        return  # No change, no need to write

    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        with open(settings.status_file, "w") as f:
            json.dump({**state, "last_update": datetime.now().isoformat()}, f, indent=4)
        _last_written_state = state
    except OSError as e:
        logger.error(f"Failed to write status file: {e}")


def read_state() -> dict | None:
    if not settings.status_file.exists():
        return None
    try:
        with open(settings.status_file) as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError):
        return None


def cleanup_state():
    """Removes the status file when the daemon stops."""
    global _last_written_state
    _last_written_state = None
    try:
        settings.status_file.unlink(missing_ok=True)
    except OSError as e:
        logger.error(f"Failed to remove status file: {e}")


def send_command(command: str, **data):
    """Queues a command for the daemon in the command file."""
    pending = take_commands(settings.command_file.with_suffix(".json.pending"), source=settings.command_file)
    pending.append({"command": command, **data})
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = settings.command_file.with_suffix(".json.tmp")
    with open(tmp_path, "w") as f:
        json.dump(pending, f)
    os.replace(tmp_path, settings.command_file)


def take_commands(claim_path: Path | None = None, source: Path | None = None) -> list[dict]:
    """
    Atomically claims and returns every queued command.

    The command file is renamed before reading so that a command written
    while the daemon is reading lands in a fresh file instead of being lost.
    """
    source = source or settings.command_file
    claim_path = claim_path or source.with_suffix(".json.processing")
    try:
        os.replace(source, claim_path)
    except FileNotFoundError:
        return []

    try:
        with open(claim_path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Error reading command file: {e}")
        return []
    finally:
        claim_path.unlink(missing_ok=True)

    if isinstance(data, dict):
        data = [data]
    return [c for c in data if isinstance(c, dict) and c.get("command")]

"""Where lock_in keeps its files."""

from pathlib import Path

from platformdirs import user_config_dir, user_data_dir, user_log_dir

APP_DIR_NAME = "lock_in"
SERVICE_NAME = "lockin.service"


def _checkout_outputs() -> Path | None:
    """``./outputs`` when running from a git checkout of this project, else None."""
    # src/lock_in/utils/paths.py -> checkout root
    root = Path(__file__).resolve().parents[3]
    if (root / "pyproject.toml").exists() and (root / ".git").exists():
        return root / "outputs"
    return None


def get_default_data_dir() -> Path:
    return _checkout_outputs() or Path(user_data_dir(appname=APP_DIR_NAME))


def get_default_log_dir() -> Path:
    return _checkout_outputs() or Path(user_log_dir(appname=APP_DIR_NAME))


def get_systemd_unit_path() -> Path:
    return Path(user_config_dir("systemd")) / "user" / SERVICE_NAME

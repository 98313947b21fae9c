import json
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from lock_in.utils.paths import get_default_data_dir, get_default_log_dir


class Settings(BaseSettings):
    """Application-wide settings managed via .env and config.json."""

    app_name: str = "lock_in"
    debug: bool = Field(default=False, description="Master toggle for verbose logging")

    # Paths
    data_dir: Path = Field(default_factory=get_default_data_dir)
    log_dir: Path = Field(default_factory=get_default_log_dir)

    def model_post_init(self, __context):
        # Ensure paths are absolute
        self.data_dir = self.data_dir.resolve()
        self.log_dir = self.log_dir.resolve()

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def lock_file(self) -> Path:
        return self.data_dir / "state.lock"

    @property
    def schedules_file(self) -> Path:
        return self.data_dir / "schedules.json"

    @property
    def command_file(self) -> Path:
        return self.data_dir / "command.json"

    @property
    def status_file(self) -> Path:
        return self.data_dir / "status.json"

    @property
    def history_file(self) -> Path:
        return self.data_dir / "history.jsonl"

    # Identities under which the enforcing app itself shows up as foreground
    app_identities: list[str] = ["lock_in", "lockin"]
    lock_screen_title: str = "LOCK IN"

    # Enforcement
    debounce_seconds: float = 2.0
    allowed_marker_seconds: float = 3.0
    poll_interval_seconds: float = 1.0
    tick_seconds: float = 5.0
    kill_blocked_apps: bool = True
    max_additional_apps: int = 4
    max_session_minutes: int = 720

    # Unlock
    otc_validity_minutes: int = 60
    partner_webhook_url: str | None = None

    # Pre-notifications
    notify_summary: str = "Focus session starting soon"
    notify_body: str = "{name} starts in {minutes} min ({duration} long session)."

    model_config = SettingsConfigDict(
        env_prefix="LOCK_IN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def save(self):
        """Saves current settings to config.json in data_dir."""
        config_path = self.data_dir / "config.json"
        self.data_dir.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        with open(config_path, "w") as f:
            json.dump(data, f, indent=4)


_last_settings_mtime: float | None = None
_cached_settings: Settings | None = None


def load_settings() -> Settings:
    """Loads settings, merging with config.json if it exists."""
    global _last_settings_mtime, _cached_settings

    initial = Settings()
    config_path = initial.data_dir / "config.json"

    if not config_path.exists():
        _last_settings_mtime = None
        _cached_settings = initial
        return initial

    current_mtime = config_path.stat().st_mtime
    if _last_settings_mtime == current_mtime and _cached_settings is not None:
        return _cached_settings

    try:
        with open(config_path) as f:
            config_data = json.load(f)
        merged = {**initial.model_dump(), **config_data}
        _cached_settings = Settings(**merged)
        _last_settings_mtime = current_mtime
        return _cached_settings
    except (OSError, ValueError):
        _cached_settings = initial
        return initial


# The single source of truth for the app
settings = load_settings()

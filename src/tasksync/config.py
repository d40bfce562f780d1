"""Configuration management for the task sync engine."""

import os
from pathlib import Path
from typing import Any, Callable, Dict, TypeVar

from .exceptions import ConfigError

try:
    from dotenv import load_dotenv

    # Load .env file from config directory or project root
    config_env = Path(__file__).parent.parent.parent / "config" / ".env"
    if config_env.exists():
        load_dotenv(config_env)
    else:
        # Fallback to working directory .env
        load_dotenv()
except ImportError:
    # python-dotenv not available, skip loading
    pass

T = TypeVar("T")

TRANSPORTS = ("firestore", "folder", "memory")


def _env(name: str, default: str, parse: Callable[[str], T]) -> T:
    raw = os.getenv(name, default)
    try:
        return parse(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid value for {name}: {raw!r}") from e


def _positive(parse: Callable[[str], Any]) -> Callable[[str], Any]:
    def parse_positive(raw: str) -> Any:
        value = parse(raw)
        if value <= 0:
            raise ValueError("must be positive")
        return value

    return parse_positive


class Config:
    """Application configuration."""

    def __init__(self) -> None:
        """Initialize configuration from environment variables."""
        # Storage
        self.data_dir = Path(
            os.getenv("TASKSYNC_DATA_DIR", str(Path.home() / ".tasksync"))
        ).expanduser()

        # Remote
        self.transport = os.getenv("TASKSYNC_TRANSPORT", "firestore").lower()
        if self.transport not in TRANSPORTS:
            raise ConfigError(
                f"Invalid value for TASKSYNC_TRANSPORT: {self.transport!r} "
                f"(expected one of {', '.join(TRANSPORTS)})"
            )
        shared_folder = os.getenv("TASKSYNC_SHARED_FOLDER")
        self.shared_folder = Path(shared_folder).expanduser() if shared_folder else None
        self.firebase_api_key = os.getenv("TASKSYNC_FIREBASE_API_KEY", "")
        self.firebase_project_id = os.getenv("TASKSYNC_FIREBASE_PROJECT_ID", "")
        self.http_timeout = _env("TASKSYNC_HTTP_TIMEOUT", "15", _positive(float))

        # Sync timing
        self.debounce_seconds = _env("TASKSYNC_DEBOUNCE_SECONDS", "0.3", float)
        self.bootstrap_delay = _env("TASKSYNC_BOOTSTRAP_DELAY", "2.5", float)
        if self.debounce_seconds < 0 or self.bootstrap_delay < 0:
            raise ConfigError("Debounce and bootstrap delays must not be negative")

        # Polling
        self.poll_min_interval = _env(
            "TASKSYNC_POLL_MIN_INTERVAL", "10", _positive(float)
        )
        self.poll_max_interval = _env(
            "TASKSYNC_POLL_MAX_INTERVAL", "90", _positive(float)
        )
        self.poll_backoff = _env("TASKSYNC_POLL_BACKOFF", "1.8", _positive(float))
        self.error_threshold = _env("TASKSYNC_ERROR_THRESHOLD", "3", _positive(int))
        if self.poll_max_interval < self.poll_min_interval:
            raise ConfigError(
                "TASKSYNC_POLL_MAX_INTERVAL must not be below "
                "TASKSYNC_POLL_MIN_INTERVAL"
            )

        # Tombstones
        self.tombstone_retention_days = _env(
            "TASKSYNC_TOMBSTONE_RETENTION_DAYS", "30", _positive(int)
        )

    @property
    def tasks_file(self) -> Path:
        """Local snapshot file."""
        return self.data_dir / "tasks.json"

    @property
    def session_file(self) -> Path:
        """Stored sign-in session."""
        return self.data_dir / "session.json"

    @property
    def device_id_file(self) -> Path:
        """Persisted device id."""
        return self.data_dir / "device_id"

    def ensure_directories(self) -> None:
        """Ensure required directories exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def as_dict(self) -> Dict[str, Any]:
        """Effective settings, with the API key masked."""
        api_key = self.firebase_api_key
        return {
            "data_dir": str(self.data_dir),
            "tasks_file": str(self.tasks_file),
            "transport": self.transport,
            "shared_folder": str(self.shared_folder) if self.shared_folder else None,
            "firebase_project_id": self.firebase_project_id or None,
            "firebase_api_key": f"{api_key[:4]}…" if api_key else None,
            "http_timeout": self.http_timeout,
            "debounce_seconds": self.debounce_seconds,
            "bootstrap_delay": self.bootstrap_delay,
            "poll_min_interval": self.poll_min_interval,
            "poll_max_interval": self.poll_max_interval,
            "poll_backoff": self.poll_backoff,
            "error_threshold": self.error_threshold,
            "tombstone_retention_days": self.tombstone_retention_days,
        }


def get_config() -> Config:
    """Get application configuration."""
    return Config()

"""Configuration handling and validation.

Settings come from an optional YAML file (``AULASYNC_CONFIG`` or an explicit
path) overlaid by environment variables. Keys in the YAML file are the
lower-cased environment variable names, e.g. ``posts_table: RAW_posts``.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from aulasync.errors import ConfigurationError
from aulasync.log import get_logger

logger = get_logger(__name__)

DEFAULT_API_URL = "https://www.aula.dk/api/"
ONE_YEAR_SECONDS = 365 * 24 * 60 * 60

TABLE_ENV_VARS = {
    "daily_overview": "DAILY_OVERVIEW_TABLE",
    "threads": "THREADS_TABLE",
    "thread_messages": "THREAD_MESSAGES_TABLE",
    "calendar_events": "CALENDAR_EVENTS_TABLE",
    "posts": "POSTS_TABLE",
    "week_overview": "WEEK_OVERVIEW_TABLE",
    "book_list": "BOOK_LIST_TABLE",
    "gallery_albums": "GALLERY_ALBUMS_TABLE",
}
SESSION_TABLE_ENV_VAR = "AULA_SESSION_ID_TABLE"


@dataclass(frozen=True)
class TableNames:
    daily_overview: str
    threads: str
    thread_messages: str
    calendar_events: str
    posts: str
    week_overview: str
    book_list: str
    gallery_albums: str


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay_ms: int = 1000

    @property
    def base_delay(self) -> float:
        return self.base_delay_ms / 1000


@dataclass(frozen=True)
class RetrievalSettings:
    default_days_in_past: int = 30
    thread_messages_days: int = 30
    posts_days: int = 30
    calendar_events_past: int = 10
    calendar_events_future: int = 30
    gallery_days: int = 5


@dataclass(frozen=True)
class Settings:
    session_table: str
    tables: Optional[TableNames] = None
    api_url: str = DEFAULT_API_URL
    region: Optional[str] = None
    session_ttl_seconds: int = ONE_YEAR_SECONDS
    retention_months: int = 2
    auth_token: Optional[str] = None
    retry: RetrySettings = field(default_factory=RetrySettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)


def load_dotenv(env_path: Path) -> None:
    """Load .env file into environment if it exists."""
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, _, value = line.partition("=")
            value = value.strip().strip('"').strip("'")
            os.environ[key.strip()] = value


def load_config_file(config_path: Path) -> Dict[str, Any]:
    """Load settings from a YAML config file"""
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


class _Source:
    """Environment variables layered over values from the YAML file."""

    def __init__(self, file_values: Dict[str, Any]):
        self.file_values = {str(k).lower(): v for k, v in file_values.items()}

    def get(self, key: str) -> Optional[str]:
        value = os.environ.get(key)
        if value:
            return value
        value = self.file_values.get(key.lower())
        if value is None or value == "":
            return None
        return str(value)

    def get_int(self, key: str, default: int) -> int:
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for %s: %r, using default: %d", key, value, default)
            return default


def load_settings(config_path: Optional[Path] = None, require_tables: bool = True) -> Settings:
    """
    Load and validate settings.

    Args:
        config_path: Optional YAML file. Falls back to ``$AULASYNC_CONFIG``.
        require_tables: Whether the data table names must be present. The
            session-only handlers only need the session table.

    Returns:
        Settings

    Raises:
        ConfigurationError: If required values are missing
    """
    if config_path is None and os.environ.get("AULASYNC_CONFIG"):
        config_path = Path(os.environ["AULASYNC_CONFIG"])

    file_values = {}
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        file_values = load_config_file(config_path)

    source = _Source(file_values)

    required = [SESSION_TABLE_ENV_VAR]
    if require_tables:
        required.extend(TABLE_ENV_VARS.values())
    missing = [key for key in required if not source.get(key)]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")

    tables = None
    if require_tables:
        tables = TableNames(**{name: source.get(key) for name, key in TABLE_ENV_VARS.items()})

    defaults = RetrievalSettings()
    retrieval = RetrievalSettings(
        default_days_in_past=source.get_int("DEFAULT_DAYS_IN_PAST", defaults.default_days_in_past),
        thread_messages_days=source.get_int("THREAD_MESSAGES_DAYS", defaults.thread_messages_days),
        posts_days=source.get_int("POSTS_DAYS", defaults.posts_days),
        calendar_events_past=source.get_int("CALENDAR_EVENTS_DAYS_PAST", defaults.calendar_events_past),
        calendar_events_future=source.get_int("CALENDAR_EVENTS_DAYS_FUTURE", defaults.calendar_events_future),
        gallery_days=source.get_int("GALLERY_DAYS", defaults.gallery_days),
    )

    retry = RetrySettings(
        max_attempts=max(1, source.get_int("RETRY_MAX_ATTEMPTS", 3)),
        base_delay_ms=max(0, source.get_int("RETRY_BASE_DELAY_MS", 1000)),
    )

    return Settings(
        session_table=source.get(SESSION_TABLE_ENV_VAR),
        tables=tables,
        api_url=source.get("API_URL") or DEFAULT_API_URL,
        region=source.get("AWS_REGION_OVERRIDE") or source.get("AWS_REGION"),
        session_ttl_seconds=source.get_int("SESSION_TTL_SECONDS", ONE_YEAR_SECONDS),
        retention_months=source.get_int("RECORD_RETENTION_MONTHS", 2),
        auth_token=source.get("AULASESSION_AUTHENTICATE_TOKEN"),
        retry=retry,
        retrieval=retrieval,
    )

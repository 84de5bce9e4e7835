from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_str_env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return default if value is None else value.strip()


def get_bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def get_int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Invalid integer for %s: %r, using %d", name, value, default)
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    session_db_path: str = "sessions.db"
    storage_type: str = "sqlite"
    persist_streaming_events: bool = True
    stream_max_events: int = 1000
    replay_output_dir: Optional[str] = None
    replay_static_path: Optional[str] = None
    share_provider: Optional[str] = None
    allowed_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"


def load_settings() -> Settings:
    """Read the engine settings from the environment."""
    origins = get_str_env("ALLOWED_ORIGINS", "http://localhost:3000")
    storage_type = get_str_env("SESSION_STORAGE", "sqlite").lower()
    if storage_type not in {"sqlite", "memory"}:
        logger.warning("Unknown SESSION_STORAGE %r, falling back to sqlite", storage_type)
        storage_type = "sqlite"
    return Settings(
        session_db_path=get_str_env("SESSION_DB_PATH", "sessions.db"),
        storage_type=storage_type,
        persist_streaming_events=get_bool_env("SESSION_PERSIST_STREAMING_EVENTS", True),
        stream_max_events=get_int_env("EVENT_STREAM_MAX_EVENTS", 1000),
        replay_output_dir=get_str_env("REPLAY_OUTPUT_DIR") or None,
        replay_static_path=get_str_env("REPLAY_STATIC_PATH") or None,
        share_provider=get_str_env("SHARE_PROVIDER_URL") or None,
        allowed_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
        log_level=get_str_env("LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    else:
        root.setLevel(level)

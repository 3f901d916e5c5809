"""
Engine settings loaded from environment variables.

Usage:
    from connection_health.config.settings import get_settings

    settings = get_settings()
    timeout = settings.probe_timeout_seconds
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_REFRESH_TIMEOUT_SECONDS = 15.0
DEFAULT_HEALTH_MAX_CONCURRENCY = 5
DEFAULT_EXPIRY_BUFFER_MINUTES = 5
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600
DEFAULT_STALE_VALIDATION_DAYS = 30


def normalize_database_url(database_url: Optional[str]) -> Optional[str]:
    """Convert Render/Heroku style postgres:// URLs to postgresql://."""
    if database_url and database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Invalid float in environment, using default",
            extra={"variable": name, "default": default},
        )
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            "Invalid integer in environment, using default",
            extra={"variable": name, "default": default},
        )
        return default


@dataclass(frozen=True)
class EngineSettings:
    """Runtime knobs for the health engine."""
    primary_database_url: Optional[str] = None
    secondary_database_url: Optional[str] = None
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    refresh_timeout_seconds: float = DEFAULT_REFRESH_TIMEOUT_SECONDS
    health_max_concurrency: int = DEFAULT_HEALTH_MAX_CONCURRENCY
    expiry_buffer_minutes: int = DEFAULT_EXPIRY_BUFFER_MINUTES
    default_token_lifetime_seconds: int = DEFAULT_TOKEN_LIFETIME_SECONDS
    stale_validation_days: int = DEFAULT_STALE_VALIDATION_DAYS
    health_check_deadline_seconds: Optional[float] = None

    @classmethod
    def from_env(cls) -> "EngineSettings":
        """Build settings from the process environment."""
        deadline_raw = os.getenv("HEALTH_CHECK_DEADLINE_SECONDS")
        deadline = _float_env("HEALTH_CHECK_DEADLINE_SECONDS", 0.0) if deadline_raw else None

        settings = cls(
            primary_database_url=normalize_database_url(os.getenv("PRIMARY_DATABASE_URL")),
            secondary_database_url=normalize_database_url(os.getenv("SECONDARY_DATABASE_URL")),
            probe_timeout_seconds=_float_env("PROBE_TIMEOUT_SECONDS", DEFAULT_PROBE_TIMEOUT_SECONDS),
            refresh_timeout_seconds=_float_env("REFRESH_TIMEOUT_SECONDS", DEFAULT_REFRESH_TIMEOUT_SECONDS),
            health_max_concurrency=max(1, _int_env("HEALTH_MAX_CONCURRENCY", DEFAULT_HEALTH_MAX_CONCURRENCY)),
            expiry_buffer_minutes=_int_env("EXPIRY_BUFFER_MINUTES", DEFAULT_EXPIRY_BUFFER_MINUTES),
            default_token_lifetime_seconds=_int_env(
                "DEFAULT_TOKEN_LIFETIME_SECONDS", DEFAULT_TOKEN_LIFETIME_SECONDS
            ),
            stale_validation_days=_int_env("STALE_VALIDATION_DAYS", DEFAULT_STALE_VALIDATION_DAYS),
            health_check_deadline_seconds=deadline if deadline else None,
        )
        return settings


_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get (or lazily build) the process-wide settings."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (tests, config reload)."""
    global _settings
    _settings = None

"""Tally configuration with sensible defaults for development."""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OPERATION_TIMEOUT = 2.0
DEFAULT_MAX_CONFLICT_RETRIES = 25
DEFAULT_CONFLICT_BACKOFF = 0.005
DEFAULT_DRAIN_TIMEOUT = 5.0


class LogFormat(StrEnum):
    """Output format for the root log handler."""

    TEXT = "text"
    JSON = "json"


class Settings(BaseSettings):
    """
    Tally configuration.

    All settings can be overridden via environment variables with TALLY_ prefix.
    Defaults are set for local development - no configuration needed to get started.
    """

    model_config = SettingsConfigDict(
        env_prefix="TALLY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    log_format: LogFormat = LogFormat.TEXT

    # Redis URL for the summary store
    redis_url: str = "redis://localhost:6379"
    # Empty prefix keeps the summary keys as plain "daily", "hourly", ...
    key_prefix: str = ""

    # Aggregation controls
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT
    max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES
    conflict_backoff_seconds: float = DEFAULT_CONFLICT_BACKOFF

    # Request observer controls
    observer_background: bool = True
    drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

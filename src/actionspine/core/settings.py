"""Environment-driven settings for actionspine.

``ActionSpineSettings`` holds the engine-wide defaults an application may
want to change without code edits: the register's display name, the
default execution mode, and logging preferences.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not mid-dispatch
    - **Environment-driven:** Reads ``ACTIONSPINE_*`` env vars and ``.env``
    - **Sensible defaults:** Works out of the box

Examples:
    >>> import os
    >>> os.environ["ACTIONSPINE_DEFAULT_EXECUTION_MODE"] = "parallel"
    >>> reset_settings()
    >>> get_settings().default_execution_mode
    'parallel'

Tags:
    settings, configuration, pydantic, environment, actionspine

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_EXECUTION_MODES = ("sequential", "parallel", "race")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ActionSpineSettings(BaseSettings):
    """Engine-wide defaults.

    Fields
    ──────
    name                        : Default display name of an ActionRegister
    default_execution_mode      : sequential | parallel | race
    default_handler_timeout_ms  : Applied to handlers registered without a timeout
    log_level                   : Default level for configure_logging()
    log_format                  : json | console, default for configure_logging()
    """

    model_config = SettingsConfigDict(
        env_prefix="ACTIONSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Engine ───────────────────────────────────────────────────
    name: str = Field(default="ActionRegister")
    default_execution_mode: str = Field(default="sequential")
    default_handler_timeout_ms: float | None = Field(default=None, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @field_validator("default_execution_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in _EXECUTION_MODES:
            raise ValueError(f"default_execution_mode must be one of {_EXECUTION_MODES}, got {value!r}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got {value!r}")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {value!r}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> ActionSpineSettings:
    """Return the cached settings singleton."""
    return ActionSpineSettings()


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    get_settings.cache_clear()


__all__ = ["ActionSpineSettings", "get_settings", "reset_settings"]

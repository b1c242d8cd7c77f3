"""Runtime settings for tasksync components.

Settings are loaded from environment variables by default and can be overridden
by explicit values from constructors/CLI flags.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_WAIT_TIMEOUT = 300.0

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class WaitSettings(BaseSettings):
    """Settings for callers waiting on a file change."""

    model_config = SettingsConfigDict(env_prefix="TASKSYNC_WAIT_", extra="ignore")

    timeout: float = Field(default=DEFAULT_WAIT_TIMEOUT, description="Seconds")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeout must be positive")
        return value


class WatchSettings(BaseSettings):
    """Settings passed to the watchfiles watcher."""

    model_config = SettingsConfigDict(env_prefix="TASKSYNC_WATCH_", extra="ignore")

    debounce_ms: int = 200
    step_ms: int = 50
    force_polling: bool = False
    poll_delay_ms: int = 300

    @field_validator("debounce_ms", "step_ms", "poll_delay_ms")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("watch intervals must be >= 1 ms")
        return value


class ServerSettings(BaseSettings):
    """Settings for the MCP server surface."""

    model_config = SettingsConfigDict(env_prefix="TASKSYNC_SERVER_", extra="ignore")

    host: str = "127.0.0.1"
    port: int = 3001
    feedback_filename: str = "feedback.md"
    log_level: str = "INFO"
    log_file: Path | None = None

    @field_validator("port")
    @classmethod
    def validate_port(cls, value: int) -> int:
        if not (1 <= value <= 65535):
            raise ValueError("port must be between 1 and 65535")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level == "WARN":
            level = "WARNING"
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @field_validator("feedback_filename")
    @classmethod
    def validate_feedback_filename(cls, value: str) -> str:
        if not value.strip() or "/" in value or "\\" in value:
            raise ValueError("feedback_filename must be a bare file name")
        return value.strip()

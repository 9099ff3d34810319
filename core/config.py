"""
Application configuration using Pydantic settings.

Usage:
    from core.config import get_settings
    settings = get_settings()

For constants, import from core.constants:
    from core.constants import GITHUB_API_BASE, DEFAULT_PAGE_SIZE
"""

import re
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.constants import (
    DEFAULT_CHECKPOINT_INTERVAL_SECONDS,
    DEFAULT_CHECKPOINT_KEY_PREFIX,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_BACKOFF_SECONDS,
    DEFAULT_MAX_WINDOW_SECONDS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_STREAM_KEY,
    MAX_PAGE_SIZE,
    MAX_STREAM_LEN,
)

_REPO_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class Settings(BaseSettings):
    """
    Unified application settings loaded from environment variables and .env file.

    Required for running the source:
        - GITHUB_REPO ("owner/name")
        - PAT_TOKEN (strongly recommended, anonymous access is heavily rate limited)
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # App settings
    app_name: str = "Commit Stream"
    debug: bool = Field(default=False, validation_alias="DEBUG")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Source
    github_repo: str = Field(default="", validation_alias="GITHUB_REPO")
    pat_token: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PAT_TOKEN", "GITHUB_TOKEN")
    )
    start_time: Optional[datetime] = Field(default=None, validation_alias="START_TIME")

    # Polling
    poll_interval_seconds: float = Field(
        default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0, validation_alias="POLL_INTERVAL_SECONDS"
    )
    max_window_seconds: int = Field(
        default=DEFAULT_MAX_WINDOW_SECONDS, gt=0, validation_alias="MAX_WINDOW_SECONDS"
    )
    page_size: int = Field(
        default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, validation_alias="PAGE_SIZE"
    )
    fetch_timeout_seconds: float = Field(
        default=DEFAULT_FETCH_TIMEOUT_SECONDS, gt=0, validation_alias="FETCH_TIMEOUT_SECONDS"
    )
    include_files: bool = Field(default=True, validation_alias="INCLUDE_FILES")
    max_backoff_seconds: float = Field(
        default=DEFAULT_MAX_BACKOFF_SECONDS, ge=0, validation_alias="MAX_BACKOFF_SECONDS"
    )
    skip_malformed_events: bool = Field(default=False, validation_alias="SKIP_MALFORMED_EVENTS")

    # Checkpointing
    checkpoint_backend: Literal["memory", "redis"] = Field(
        default="memory", validation_alias="CHECKPOINT_BACKEND"
    )
    checkpoint_interval_seconds: int = Field(
        default=DEFAULT_CHECKPOINT_INTERVAL_SECONDS, gt=0, validation_alias="CHECKPOINT_INTERVAL_SECONDS"
    )
    checkpoint_key_prefix: str = Field(
        default=DEFAULT_CHECKPOINT_KEY_PREFIX, validation_alias="CHECKPOINT_KEY_PREFIX"
    )

    # Emission sink
    sink_backend: Literal["log", "redis"] = Field(default="log", validation_alias="SINK_BACKEND")
    stream_key: str = Field(default=DEFAULT_STREAM_KEY, validation_alias="STREAM_KEY")
    max_stream_len: int = Field(default=MAX_STREAM_LEN, gt=0, validation_alias="MAX_STREAM_LEN")

    # Redis
    redis_host: str = Field(default="localhost", validation_alias="REDIS_HOST")
    redis_port: int = Field(default=6379, validation_alias="REDIS_PORT")
    redis_db: int = Field(default=0, validation_alias="REDIS_DB")
    redis_password: Optional[str] = Field(default=None, validation_alias="REDIS_PASSWORD")

    @property
    def redis_url(self) -> str:
        """Construct Redis URL from components."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @field_validator("github_repo")
    @classmethod
    def validate_github_repo(cls, v: str) -> str:
        """Repository identifiers must look like "owner/name" when set."""
        v = v.strip()
        if v and not _REPO_PATTERN.match(v):
            raise ValueError(f"GITHUB_REPO must be 'owner/name', got {v!r}")
        return v

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive start times are interpreted as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(seconds=self.poll_interval_seconds)

    @property
    def max_window(self) -> timedelta:
        return timedelta(seconds=self.max_window_seconds)

    @property
    def max_backoff(self) -> Optional[timedelta]:
        """Upper bound for failure backoff, None when backoff is disabled."""
        if self.max_backoff_seconds <= 0:
            return None
        return timedelta(seconds=self.max_backoff_seconds)

    def validate_runtime_config(self) -> tuple[list[str], list[str]]:
        """
        Validate configuration before starting the source.

        Returns:
            Tuple of (errors, warnings) - errors are fatal, warnings are advisory
        """
        errors = []
        warnings = []

        if not self.github_repo:
            errors.append("GITHUB_REPO is required to run the commit source")
        if not self.pat_token:
            warnings.append(
                "PAT_TOKEN not set - unauthenticated GitHub requests are limited to 60/hour"
            )
        if self.include_files and self.poll_interval_seconds < 1:
            warnings.append(
                "INCLUDE_FILES issues one extra request per commit; "
                "a sub-second poll interval may exhaust the rate limit"
            )
        if self.sink_backend == "log":
            warnings.append("SINK_BACKEND=log - records are only written to the log")

        return errors, warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


__all__ = ["Settings", "get_settings"]

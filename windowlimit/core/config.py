"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class RateLimitSettings(BaseSettings):
    """Sliding-window limiter configuration.

    Durations are plain seconds here; the limiter normalizes them again
    (precision must divide one hour, window and stale age must be positive).
    """

    enabled: bool = Field(
        True,
        description="Enable the enforce_rate_limit dependency",
    )
    threshold: int = Field(
        10,
        description="Maximum admitted events per window (per key)",
    )
    window_seconds: int = Field(
        60,
        description="Trailing window length in seconds",
    )
    bucket_precision_seconds: int = Field(
        60,
        description="Bucket width in seconds; must divide 3600 evenly",
    )
    stale_bucket_age_seconds: int = Field(
        3600,
        description="Absolute maximum bucket age regardless of precision",
    )
    request_timeout_seconds: float | None = Field(
        2.0,
        description="Deadline for one admission round trip (None disables it)",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers when throttling",
    )
    key_prefix: str = Field(
        "ratelimit:",
        description="Namespace prepended to every limiter key in the store",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Backing store connection settings."""

    url: str | None = Field(
        None,
        description="Redis URL; when unset an in-memory store is used",
    )
    cluster: bool = Field(
        False,
        description="Connect with the cluster-aware client",
    )
    socket_timeout_seconds: float = Field(
        1.0,
        description="Socket timeout for Redis commands",
    )
    max_connections: int | None = Field(
        None,
        description="Connection pool size (client default when unset)",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated files to keep")
    request_id_header: str = Field("X-Request-ID", description="Correlation header name")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Composed from the domain-specific groups above; each group reads its own
    prefixed environment variables.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()

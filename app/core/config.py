"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are read once at process start. The rate limiter does not hot-reload
policies; restart the process to apply changes.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


DEFAULT_SKIP_PATTERNS: list[str] = [
    r"^/static/",
    r"^/images/",
    r"^/css/",
    r"^/js/",
    r"^/favicon\.ico$",
]


class PathPolicy(BaseModel):
    """Rate limit override for every path starting with ``prefix``."""

    prefix: str = Field(..., min_length=1)
    max_attempts: int = Field(..., ge=1)
    decay_minutes: int = Field(1, ge=1)
    block_minutes: int = Field(..., ge=1)


def _default_path_policies() -> list[PathPolicy]:
    return [
        PathPolicy(prefix="/api/auth/login", max_attempts=10, decay_minutes=1, block_minutes=10),
        PathPolicy(prefix="/api/auth/register", max_attempts=5, decay_minutes=1, block_minutes=15),
    ]


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Static type checkers treat BaseSettings fields as constructor arguments,
    which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    return RedisSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    return RateLimitSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-IP, per-route rate limiting",
    )
    rate_limit_backend: Literal["redis", "memory"] = Field(
        "redis",
        description="Rate limit state store: shared Redis or per-process memory",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Add X-RateLimit-* headers to admitted responses",
    )
    trust_proxy_headers: bool = Field(
        False,
        description="Resolve the client IP from X-Forwarded-For (only behind a trusted proxy)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Redis connection configuration."""

    url: str = Field(
        "redis://localhost:6379/0",
        description="Redis connection URL",
    )
    socket_timeout: float = Field(
        0.5,
        description="Per-command timeout in seconds; failures make the limiter fail open",
        gt=0,
    )
    connect_timeout: float = Field(
        0.5,
        description="Connection timeout in seconds",
        gt=0,
    )
    lock_prefix: str = Field(
        "lock:",
        description="Key prefix for distributed locks",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Rate limiting policies.

    ``path_policies`` and ``skip_patterns`` are JSON lists when given through
    the environment, e.g.
    ``RATE_LIMIT_PATH_POLICIES='[{"prefix": "/api/auth/login", "max_attempts": 10, "block_minutes": 10}]'``.
    """

    max_attempts: int = Field(
        60,
        description="Default maximum requests per decay window",
        ge=1,
    )
    decay_minutes: int = Field(
        1,
        description="Default decay window in minutes (idle time before the counter expires)",
        ge=1,
    )
    block_minutes: int = Field(
        5,
        description="Default block duration in minutes once the limit is exceeded",
        ge=1,
    )
    path_policies: list[PathPolicy] = Field(
        default_factory=_default_path_policies,
        description="Path prefix overrides, first match wins",
    )
    skip_patterns: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SKIP_PATTERNS),
        description="Regexes for paths that bypass rate limiting",
    )
    key_prefix: str = Field(
        "rate_limit",
        description="Namespace for rate limit keys",
        min_length=1,
    )
    blocked_message: str = Field(
        "Too many requests, please try again later.",
        description="Message returned in 429 responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @field_validator("key_prefix")
    @classmethod
    def _strip_trailing_colon(cls, value: str) -> str:
        return value.rstrip(":")


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()

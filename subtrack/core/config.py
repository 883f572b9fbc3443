"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
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


# Nested BaseSettings don't inherit env_file, so populate os.environ up front.
# Tests set TESTING=true to keep developer .env files out of the run.
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment."""

    return AppSettings()


def _build_mongo_settings() -> "MongoSettings":
    """Build MongoDB settings from environment."""

    return MongoSettings()


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-route-class rate limiting",
    )
    rate_limit_backend: Literal["mongo", "memory"] = Field(
        "mongo",
        description="Counter store: shared MongoDB collections or per-process memory",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include RateLimit-* and Retry-After headers in responses",
    )
    rate_limit_trust_forwarded_for: bool = Field(
        False,
        description="Derive the client address from X-Forwarded-For (behind a proxy)",
    )
    rate_limit_cleanup_interval_seconds: int = Field(
        300,
        description="Interval of the expired-record sweep; 0 disables it",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class MongoSettings(BaseSettings):
    """MongoDB connection configuration.

    Timeouts bound every store round trip so a degraded database turns into a
    fast failure (and a fail-open rate limit decision) instead of a hung request.
    """

    uri: str = Field(
        "mongodb://localhost:27017",
        description="MongoDB connection string",
    )
    db_name: str = Field(
        "subscription_tracker",
        description="Database holding the rate limit collections",
    )
    server_selection_timeout_ms: int = Field(
        2000,
        description="How long to wait for a reachable server",
        ge=1,
    )
    connect_timeout_ms: int = Field(
        2000,
        description="TCP connect timeout",
        ge=1,
    )
    socket_timeout_ms: int = Field(
        2000,
        description="Per-operation socket timeout",
        ge=1,
    )
    max_pool_size: int = Field(
        50,
        description="Maximum connections in the client pool",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field(
        "json",
        description="json for structured logs, plain for local development",
    )
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size; 0 disables rotation",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    mongo: MongoSettings = Field(default_factory=_build_mongo_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()

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

# Production may inject everything through the environment only
_env_file = str(_env_path) if _env_path.is_file() else None

# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_limiter_settings() -> "LimiterSettings":
    return LimiterSettings()


def _build_probe_settings() -> "ProbeSettings":
    return ProbeSettings()


def _build_log_settings() -> "LogSettings":
    return LogSettings()


def _build_app_settings() -> "AppSettings":
    return AppSettings()


class LimiterSettings(BaseSettings):
    """Window limiter defaults and fallback policies."""

    default_max_requests: int = Field(
        3,
        description="Requests admitted per window when no per-identifier limit is set",
        ge=1,
    )
    default_window_seconds: int = Field(
        60,
        description="Default sliding window (and cooldown) length in seconds",
        ge=1,
    )
    sweep_interval_seconds: float = Field(
        30.0,
        description="Interval between idle-identifier sweeps",
        gt=0,
    )
    url_fallback_max_requests: int = Field(
        60,
        description="Conservative limit applied to a URL when no policy is detected",
        ge=1,
    )
    url_fallback_window_seconds: int = Field(
        3600,
        description="Window of the conservative fallback policy",
        ge=1,
    )
    custom_default_limit: int = Field(
        10,
        description="Limit used by /test-custom when the caller omits one",
        ge=1,
    )
    custom_default_window_seconds: int = Field(
        60,
        description="Window used by /test-custom when the caller omits one",
        ge=1,
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on 429 responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="LIMITER_",
        case_sensitive=False,
    )


class ProbeSettings(BaseSettings):
    """Flood-test (probe) safety caps and upstream HTTP options."""

    max_requests: int = Field(
        100,
        description="Hard safety ceiling on requests issued by a single probe",
        ge=1,
    )
    custom_margin: int = Field(
        5,
        description="Requests allowed beyond the configured limit in custom probes",
        ge=0,
    )
    delay_ms: int = Field(
        100,
        description="Delay between consecutive probe requests in milliseconds",
        ge=0,
    )
    request_timeout_seconds: float = Field(
        10.0,
        description="Timeout for each upstream request",
        gt=0,
    )
    user_agent: str = Field(
        "Rate-Limiter-Test/1.0",
        description="User-Agent sent to tested targets",
    )

    model_config = SettingsConfigDict(
        env_prefix="PROBE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Either 'json' or 'plain'")
    output: str = Field("stdout", description="Either 'stdout' or 'file'")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file at this size (0 disables rotation)",
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


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    title: str = Field("Rate Limiter API", description="Service title")
    version: str = Field("1.0.0", description="Version reported by /health")

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Raises validation errors on startup if any setting is out of range.
    """

    app_env: str = APP_ENV
    limiter: LimiterSettings = Field(default_factory=_build_limiter_settings)
    probe: ProbeSettings = Field(default_factory=_build_probe_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


settings = Settings()

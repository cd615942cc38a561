"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

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

# Select the .env file for the current environment
_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists and we're not under pytest
_env_file = (
    str(_env_path)
    if _env_path.is_file() and os.getenv("TESTING", "").lower() != "true"
    else None
)


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Limits per action, in the same shape accepted by RATE_LIMIT_ACTIONS.
DEFAULT_ACTION_LIMITS: dict[str, dict[str, int]] = {
    "messages": {"limit": 60, "window_seconds": 60},
    "profileUpdates": {"limit": 10, "window_seconds": 3600},
    "likes": {"limit": 100, "window_seconds": 3600},
    "apiCalls": {"limit": 1000, "window_seconds": 3600},
    "notifications": {"limit": 60, "window_seconds": 60},
    "reports": {"limit": 10, "window_seconds": 3600},
    "blocks": {"limit": 20, "window_seconds": 3600},
}

# Upper bound for a single batched delete (and therefore a sweep page).
MAX_BATCH_SIZE = 500


def _build_app_settings() -> "AppSettings":
    """Build app settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    """Build logging settings from environment."""

    return LogSettings()  # type: ignore[call-arg]


def _build_store_settings() -> "StoreSettings":
    """Build store settings from environment."""

    return StoreSettings()  # type: ignore[call-arg]


def _build_rate_limit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()  # type: ignore[call-arg]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated API keys accepted by the admin routes only",
    )
    subject_header: str = Field(
        "X-Subject-ID",
        description="Header carrying the authenticated subject identifier",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: 'json' or 'plain'")
    output: str = Field("stdout", description="Log output: 'stdout' or 'file'")
    file_path: str | None = Field(
        None,
        description="Log file path when output is 'file'",
    )
    max_bytes: int = Field(
        10_485_760,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Number of rotated files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class StoreSettings(BaseSettings):
    """Rate limit store configuration.

    The memory backend is process-local and only suitable for development
    and tests; deployments with more than one worker must use redis.
    """

    backend: str = Field(
        "memory",
        description="Store backend: 'memory' or 'redis'",
    )
    redis_url: str | None = Field(
        None,
        description="Redis connection URL (required for the redis backend)",
    )
    key_prefix: str = Field(
        "rateLimits",
        description="Namespace prepended to every record key in Redis",
    )
    max_transaction_retries: int = Field(
        5,
        description=(
            "Attempts for an optimistic transaction before giving up; should cover "
            "the expected concurrent writers per key, beyond which callers are "
            "admitted degraded"
        ),
        ge=1,
    )
    socket_timeout_seconds: float = Field(
        2.0,
        description="Redis socket and connect timeout in seconds",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class ActionLimitSettings(BaseModel):
    """Limit definition for one action."""

    limit: int = Field(..., ge=1)
    window_seconds: int = Field(..., ge=1)


class RateLimitSettings(BaseSettings):
    """Sliding window limits and idle record reclamation."""

    actions: dict[str, ActionLimitSettings] = Field(
        default_factory=lambda: {
            name: ActionLimitSettings(**cfg) for name, cfg in DEFAULT_ACTION_LIMITS.items()
        },
        description="Per-action limits as a JSON object: {name: {limit, window_seconds}}",
    )
    idle_threshold_seconds: int = Field(
        86_400,
        description="Records untouched for longer than this are deleted by the sweeper",
        ge=1,
    )
    sweep_page_size: int = Field(
        MAX_BATCH_SIZE,
        description="Records scanned (and at most deleted) per sweep page",
        ge=1,
        le=MAX_BATCH_SIZE,
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @field_validator("actions")
    @classmethod
    def _actions_not_empty(
        cls, value: dict[str, ActionLimitSettings]
    ) -> dict[str, ActionLimitSettings]:
        if not value:
            raise ValueError("at least one action must be configured")
        return value


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.

    Environments:
    - development: Local development (DEBUG=true)
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)
    store: StoreSettings = Field(default_factory=_build_store_settings)
    rate_limit: RateLimitSettings = Field(default_factory=_build_rate_limit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()

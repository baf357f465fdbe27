"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Values here are raw settings. They are turned into immutable policy objects
(LimitConfig, AllowlistMatcher) once, when the app is built.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ratelimit_gate.core.errors import InvalidConfigAppError


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

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


# Google crawler and infrastructure ranges exempted by default.
DEFAULT_WHITELIST_IP_RANGE: tuple[str, ...] = (
    "64.18.0.0/20",
    "64.233.160.0/19",
    "66.102.0.0/20",
    "66.249.80.0/20",
    "72.14.192.0/18",
    "74.125.0.0/16",
    "108.177.8.0/21",
    "172.217.0.0/19",
    "173.194.0.0/16",
    "207.126.144.0/20",
    "209.85.128.0/17",
    "216.58.192.0/19",
    "216.239.32.0/19",
)


def _build_log_settings() -> "LogSettings":
    """Build log settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    However, static type checkers often treat required fields as required
    constructor arguments, which is not how BaseSettings is intended to be used.
    """

    return LogSettings()  # type: ignore[call-arg]


def _build_redis_settings() -> "RedisSettings":
    """Build counter store settings from environment."""

    return RedisSettings()  # type: ignore[call-arg]


def _build_ratelimit_settings() -> "RateLimitSettings":
    """Build rate limit settings from environment."""

    return RateLimitSettings()  # type: ignore[call-arg]


class LogSettings(BaseSettings):
    """Logging configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Counter store connection parameters.

    When ``url`` is unset the service falls back to a per-process in-memory
    store, which is only correct for a single worker.
    """

    url: str | None = Field(
        None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )
    timeout_seconds: float = Field(
        0.5,
        description="Upper bound for one counter store round trip",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class RouteLimitSettings(BaseModel):
    """Per-route override as given in RATELIMIT_ROUTE_LIMITS."""

    limit: int
    duration: int | str


class RateLimitSettings(BaseSettings):
    """Rate limiting configuration."""

    enabled: bool = Field(
        True,
        description="Master switch for the rate limit interceptor",
    )
    namespace: str = Field(
        "clhr",
        description="Prefix for every counter key",
    )
    global_limit: int = Field(
        -1,
        description="Maximum requests per window for routes without an override (<= 0 disables)",
    )
    global_duration: int | str = Field(
        1000,
        description="Global window length in milliseconds or as '1s', '5m', ...",
    )
    route_limits: dict[str, RouteLimitSettings] = Field(
        default_factory=dict,
        description="Per-route overrides keyed by route path template (JSON)",
    )
    whitelist_ip_range: str = Field(
        ",".join(DEFAULT_WHITELIST_IP_RANGE),
        description="Comma-separated CIDR ranges exempted from rate limiting",
    )
    failure_policy: Literal["open", "closed"] = Field(
        "closed",
        description="What to do when the counter store is unavailable",
    )
    trust_proxy_headers: bool = Field(
        False,
        description=(
            "Read the client IP from X-Forwarded-For and similar headers. "
            "Only enable behind a proxy that overwrites them"
        ),
    )

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.

    Environments:
    - development: Local development
    - testing: Automated tests (uses .env.testing)
    - staging: Pre-production (uses .env.staging)
    - production: Production deployment (uses .env.production)
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=_build_log_settings)
    redis: RedisSettings = Field(default_factory=_build_redis_settings)
    ratelimit: RateLimitSettings = Field(default_factory=_build_ratelimit_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


def load_settings() -> Settings:
    """Load settings from the environment.

    Raises:
        InvalidConfigAppError: If any variable fails validation, e.g. an
            unknown RATELIMIT_FAILURE_POLICY or a non-integer limit.
    """
    try:
        return Settings()
    except ValidationError as exc:
        error = exc.errors()[0]
        setting = ".".join(str(part) for part in error["loc"]) or exc.title
        raise InvalidConfigAppError(
            code="invalid_config",
            message=f"Invalid setting {setting}: {error['msg']}",
            details={"setting": setting},
        ) from exc


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = load_settings()

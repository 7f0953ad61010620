"""Gateway configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Backend targets are not fields here: the set of services is dynamic
(``GATEWAY_SERVICES``), so each ``<SVC>_SERVICE_URL`` is read when the route
table is built. See ``RoutingSettings.service_targets``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
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

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings.
# Nested BaseSettings don't inherit env_file, and the per-service URLs are
# read straight from os.environ.
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class ServerSettings(BaseSettings):
    """Listen address for the gateway process."""

    host: str = Field("0.0.0.0", description="Interface to bind")
    port: int = Field(3000, description="Gateway listen port", ge=1, le=65535)

    model_config = SettingsConfigDict(case_sensitive=False)


class RoutingSettings(BaseSettings):
    """Route table source and upstream call behaviour."""

    prefix: str = Field(
        "/api",
        description="Path prefix under which services are exposed",
    )
    services: str = Field(
        "users,orders",
        description="Comma-separated list of service names to expose",
    )
    upstream_timeout_seconds: float = Field(
        30.0,
        description="Timeout applied to every backend call",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        case_sensitive=False,
    )

    @property
    def service_names(self) -> list[str]:
        return _split_csv(self.services)

    def service_targets(
        self, environ: Mapping[str, str] | None = None
    ) -> dict[str, str | None]:
        """Resolve ``<SVC>_SERVICE_URL`` for every configured service.

        Missing variables map to ``None``; validation happens when the route
        table is built so the process refuses to start.
        """

        env = os.environ if environ is None else environ
        targets: dict[str, str | None] = {}
        for name in self.service_names:
            targets[name] = env.get(f"{name.upper()}_SERVICE_URL")
        return targets


class RateLimitSettings(BaseSettings):
    """Admission control configuration (fixed window per client)."""

    enabled: bool = Field(True, description="Enable per-client rate limiting")
    window_ms: int = Field(
        60_000,
        description="Fixed window length in milliseconds",
        ge=1,
    )
    max_requests: int = Field(
        3,
        description="Maximum requests per client per window",
        ge=1,
    )
    message: str = Field(
        "Max requests per minute reached",
        description="Error message returned in the 429 body",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Key clients by the first X-Forwarded-For hop",
    )
    exempt_paths: str = Field(
        "/health",
        description="Comma-separated paths that bypass the limiter",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000

    @property
    def exempt_path_set(self) -> frozenset[str]:
        return frozenset(_split_csv(self.exempt_paths))


class LogSettings(BaseSettings):
    """Logging sink and format configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="json or plain")
    output: str = Field("stdout", description="stdout or file")
    file_path: str | None = Field(
        "logs/gateway.log",
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate the log file after this many bytes (0 disables)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main settings container.

    Nested settings are created via default_factory so each one reads its own
    environment prefix.
    """

    app_env: str = APP_ENV
    server: ServerSettings = Field(default_factory=ServerSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(case_sensitive=False)


settings = Settings()

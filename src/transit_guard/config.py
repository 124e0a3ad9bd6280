"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (12-factor app)
  - Fall back to a .env file
  - Validate types and constraints at startup

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so TELEMETRY__ENDPOINT maps to
telemetry.endpoint and RESILIENCE__FORCE_SHUTDOWN_TIMEOUT_SECONDS maps to
resilience.force_shutdown_timeout_seconds.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

DEFAULT_IGNORED_ERRORS = (
    "Non-Error promise rejection captured",
    "Network request failed",
    "AbortError",
    "CanceledError",
)


class Environment(str, Enum):
    """Deployment environment; only ``development`` gets verbose error bodies."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


class ServerSettings(BaseModel):
    """HTTP listener binding."""

    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=5000, ge=1, le=65535, description="Bind port")


class TelemetrySettings(BaseModel):
    """
    Error collector configuration.

    When ``endpoint`` is unset, faults are only written to the structured log.
    """

    endpoint: str | None = Field(default=None, description="Collector URL receiving fault events")
    api_key: SecretStr | None = Field(default=None, description="Collector API key")
    timeout_seconds: float = Field(default=5.0, gt=0)
    max_breadcrumbs: int = Field(default=100, ge=1)
    ignore_errors: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_ERRORS))


class ResilienceSettings(BaseModel):
    """Timings of the process-level safety nets."""

    fault_flush_grace_seconds: float = Field(
        default=1.0, ge=0, description="Wait before exiting on a fatal fault"
    )
    force_shutdown_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Drain deadline after SIGINT/SIGTERM"
    )
    slow_request_threshold_ms: int = Field(default=3000, ge=1)


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: Environment = Field(default=Environment.DEVELOPMENT)
    log_level: str = Field(default="INFO")
    server: ServerSettings = Field(default_factory=lambda: ServerSettings())
    telemetry: TelemetrySettings = Field(default_factory=lambda: TelemetrySettings())
    resilience: ResilienceSettings = Field(default_factory=lambda: ResilienceSettings())

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalize to upper case and reject unknown level names."""
        level = value.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value!r}")
        return level

    @property
    def is_development(self) -> bool:
        return self.environment is Environment.DEVELOPMENT

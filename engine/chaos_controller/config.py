"""
Configuration management for the chaos controller.

Settings come from CHAOS_* environment variables or a .env file.
Downstream service addresses keep the plain variable names the rest of the
test environment already exports (CLAIMS_SERVICE_URL, PORT, ...).
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AppEnvironment(str, Enum):
    """Where the controller is running."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHAOS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    env: AppEnvironment = Field(
        default=AppEnvironment.DEVELOPMENT,
        description="Deployment environment",
    )

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(
        default=3004,
        alias="PORT",
        ge=1,
        le=65535,
        description="Server port",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=False, description="Emit JSON log lines")

    # Downstream service registry
    claims_service_url: str = Field(
        default="http://localhost:3001",
        alias="CLAIMS_SERVICE_URL",
        description="Base URL of the claims service",
    )
    policy_service_url: str = Field(
        default="http://localhost:8080",
        alias="POLICY_SERVICE_URL",
        description="Base URL of the policy service",
    )
    investment_service_url: str = Field(
        default="http://localhost:3002",
        alias="INVESTMENT_SERVICE_URL",
        description="Base URL of the investment service",
    )
    notification_service_url: str = Field(
        default="http://localhost:3003",
        alias="NOTIFICATION_SERVICE_URL",
        description="Base URL of the notification service",
    )

    # Outbound call timeouts
    propagate_timeout_s: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for POST {service}/chaos/set",
    )
    status_timeout_s: float = Field(
        default=3.0,
        gt=0,
        le=60,
        description="Timeout for GET {service}/health",
    )
    propagation_history_size: int = Field(
        default=200,
        ge=1,
        le=10000,
        description="Number of propagation results kept for diagnostics",
    )

    # Scenarios
    scenario_time_scale: float = Field(
        default=1.0,
        gt=0,
        le=100,
        description="Multiplier applied to every scenario step delay",
    )
    scenario_run_history_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Number of scenario runs kept for inspection",
    )

    # OpenTelemetry export (tracing is off unless an endpoint is set)
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None,
        alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP/HTTP collector base URL",
    )
    otel_exporter_otlp_headers: str | None = Field(
        default=None,
        alias="OTEL_EXPORTER_OTLP_HEADERS",
        description="Comma separated key=value headers for the OTLP exporter",
    )

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v!r} (expected one of {', '.join(LOG_LEVELS)})")
        return level

    @field_validator(
        "claims_service_url",
        "policy_service_url",
        "investment_service_url",
        "notification_service_url",
    )
    @classmethod
    def validate_service_url(cls, v: str) -> str:
        """Service URLs must be absolute http(s) URLs; trailing slash is dropped."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid service URL: {v}. Must start with http:// or https://")
        return v.rstrip("/")

    @property
    def tracing_enabled(self) -> bool:
        """Check if span export is configured."""
        return bool(self.otel_exporter_otlp_endpoint)

    @property
    def service_urls(self) -> dict[str, str]:
        """Base URL per downstream service name."""
        return {
            "claims": self.claims_service_url,
            "policy": self.policy_service_url,
            "investment": self.investment_service_url,
            "notification": self.notification_service_url,
        }

    def get_redacted_config(self) -> dict[str, object]:
        """
        Settings as served by ``GET /config``.

        OTLP headers usually carry an API key, so only their presence is reported.
        """
        return {
            "env": self.env.value,
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "services": self.service_urls,
            "propagate_timeout_s": self.propagate_timeout_s,
            "status_timeout_s": self.status_timeout_s,
            "scenario_time_scale": self.scenario_time_scale,
            "tracing_enabled": self.tracing_enabled,
            "otlp_headers_configured": self.otel_exporter_otlp_headers is not None,
        }


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()


def get_settings_dep() -> Settings:
    """FastAPI dependency wrapper around ``get_settings``; tests override it."""
    return get_settings()

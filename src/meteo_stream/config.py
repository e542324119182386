"""Application configuration management."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when required settings are missing or invalid."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    app_host: str = Field(default="0.0.0.0", description="Server bind host")
    app_port: int = Field(default=8080, description="Server bind port")

    # Provider settings
    provider_url: str = Field(
        default="https://api.openweathermap.org/data/2.5/weather",
        description="OpenWeatherMap current weather endpoint",
    )
    provider_api_key: str = Field(
        ...,
        description="OpenWeatherMap API key",
        min_length=1,
        repr=False,
    )
    latitude: float = Field(..., ge=-90, le=90, description="Latitude to poll")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude to poll")
    location_key: str | None = Field(
        default=None,
        description="Location key stored with observations (defaults to 'lat,lon')",
    )
    units: Literal["metric", "imperial", "standard"] = Field(
        default="metric",
        description="Provider unit system",
    )
    request_timeout_ms: int = Field(
        default=5000,
        description="Provider request timeout in milliseconds",
        ge=1000,
    )

    # Polling and retry settings
    poll_interval_seconds: float = Field(
        default=60.0,
        description="Seconds between poll cycles",
        gt=0,
    )
    max_retries: int = Field(default=3, description="Retries after the first attempt", ge=0)
    retry_base_ms: int = Field(default=500, description="Backoff base delay", ge=0)
    retry_cap_ms: int = Field(default=30000, description="Backoff delay cap", ge=0)
    retry_jitter_ms: int = Field(default=500, description="Maximum random jitter", ge=0)

    # Store settings
    retention_days: float = Field(
        default=7.0,
        description="Days an observation is kept before expiry",
        gt=0,
    )
    store_max_size: int = Field(
        default=100000,
        description="Maximum stored observations",
        ge=1,
    )

    # Broadcast settings
    subscriber_queue_size: int = Field(
        default=100,
        description="Pending events allowed per subscriber before it is dropped",
        ge=1,
    )
    shutdown_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound on graceful shutdown",
        gt=0,
    )

    # Threshold alerts (disabled when unset)
    alert_temperature_high: float | None = Field(default=None)
    alert_temperature_low: float | None = Field(default=None)
    alert_wind_speed_high: float | None = Field(default=None)

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    @field_validator("provider_api_key")
    @classmethod
    def _strip_api_key(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("provider_api_key must not be blank")
        return value

    @property
    def resolved_location(self) -> str:
        """Location key used to tag and filter observations."""
        return self.location_key or f"{self.latitude},{self.longitude}"

    @property
    def request_timeout_seconds(self) -> float:
        return self.request_timeout_ms / 1000


def load_settings(**overrides: object) -> Settings:
    """Build settings, converting validation failures into ConfigurationError."""
    try:
        return Settings(**overrides)  # type: ignore[arg-type]
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'settings'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return load_settings()

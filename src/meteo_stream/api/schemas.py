"""Observation model and API response schemas."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Observation(BaseModel):
    """One normalized weather reading."""

    model_config = ConfigDict(frozen=True)

    id: str | None = Field(default=None, description="Store-assigned identity")
    timestamp: datetime | None = Field(default=None, description="Capture time")
    location: str | None = Field(default=None, description="Location key")
    temperature: float | None = Field(default=None, description="Air temperature")
    windSpeed: float | None = Field(default=None, description="Wind speed")  # noqa: N815
    windDirection: float | None = Field(  # noqa: N815
        default=None, description="Wind direction in degrees"
    )
    conditionCode: int | None = Field(  # noqa: N815
        default=None, description="Provider weather condition code"
    )
    raw: dict[str, Any] = Field(default_factory=dict, description="Unmodified provider payload")

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        """Treat naive capture times as UTC."""
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class WeatherAlert(BaseModel):
    """Threshold crossing detected on an observation."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Alert kind, e.g. temperature_high")
    field: str = Field(..., description="Observation field that crossed the threshold")
    value: float = Field(..., description="Observed value")
    threshold: float = Field(..., description="Configured threshold")
    location: str | None = None
    timestamp: datetime | None = None


class Event(BaseModel):
    """Envelope pushed to live subscribers."""

    event: str = Field(..., description="Event name")
    data: Any = Field(default=None, description="Event payload")


class ObservationIn(BaseModel):
    """Reading pushed by an external sensor.

    Unknown fields are accepted and kept in the observation's ``raw`` payload.
    """

    model_config = ConfigDict(extra="allow")

    timestamp: datetime | None = Field(
        default=None, description="Capture time, server time if omitted"
    )
    location: str | None = Field(
        default=None, description="Location key, configured one if omitted"
    )
    temperature: float | None = None
    windSpeed: float | None = None  # noqa: N815
    windDirection: float | None = None  # noqa: N815
    conditionCode: int | None = None  # noqa: N815


class IngestResponse(BaseModel):
    """Result of accepting a pushed reading."""

    ok: bool = True
    persisted: bool = Field(..., description="Whether the store accepted the reading")
    observation: Observation


class ServiceHealth(BaseModel):
    """Query boundary health response."""

    ok: bool = Field(..., description="Whether the store is reachable")
    timestamp: datetime = Field(..., description="Time of the check")


class ErrorDetail(BaseModel):
    """Error detail."""

    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")


class ErrorResponse(BaseModel):
    """Error response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Health status")


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str = Field(..., description="Readiness status")
    checks: dict[str, str] = Field(default_factory=dict, description="Component checks")

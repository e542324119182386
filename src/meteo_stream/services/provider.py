"""OpenWeatherMap API client."""

import asyncio
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog
from prometheus_client import Counter, Histogram

from meteo_stream.api.schemas import Observation
from meteo_stream.config import Settings

logger = structlog.get_logger()

# Upper bound on how much of an error body ends up in logs and exceptions
MAX_ERROR_BODY = 300


class ProviderError(Exception):
    """Base exception for weather provider errors."""


class ProviderTimeoutError(ProviderError):
    """Raised when the provider call exceeds its timeout budget."""


class ProviderAPIError(ProviderError):
    """Raised when the provider returns a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body[:MAX_ERROR_BODY]
        super().__init__(f"Provider returned {status_code}: {self.body}")


# Metrics
provider_requests = Counter(
    "provider_requests_total",
    "Total weather provider requests",
    ["status"],
)
provider_duration = Histogram(
    "provider_request_duration_seconds",
    "Weather provider request duration in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)


def _path(data: Any, *keys: str | int) -> Any:
    """Walk nested dicts/lists, returning None as soon as a step is missing."""
    for key in keys:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        try:
            data = data[key]
        except KeyError:
            return None
    return data


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _capture_time(dt: Any) -> datetime:
    seconds = _number(dt)
    if seconds is not None:
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            logger.warning("Ignoring out-of-range provider timestamp", dt=dt)
    return datetime.now(UTC)


def normalize(payload: dict[str, Any], location: str | None = None) -> Observation:
    """Map an OpenWeatherMap payload onto an Observation.

    Missing fields become None. The capture time comes from the provider's
    ``dt`` field when it is a usable epoch, otherwise from the local clock.
    """
    code = _path(payload, "weather", 0, "id")

    return Observation(
        timestamp=_capture_time(_path(payload, "dt")),
        location=location,
        temperature=_number(_path(payload, "main", "temp")),
        windSpeed=_number(_path(payload, "wind", "speed")),
        windDirection=_number(_path(payload, "wind", "deg")),
        conditionCode=code if isinstance(code, int) and not isinstance(code, bool) else None,
        raw=payload,
    )


class OpenWeatherClient:
    """HTTP client for the OpenWeatherMap current weather API."""

    def __init__(self, settings: Settings) -> None:
        """Initialize client with settings."""
        self._base_url = settings.provider_url
        self._api_key = settings.provider_api_key
        self._units = settings.units
        self._latitude = settings.latitude
        self._longitude = settings.longitude
        self._location = settings.resolved_location
        self._timeout = settings.request_timeout_seconds

    async def fetch_observation(
        self,
        lat: float | None = None,
        lon: float | None = None,
        timeout: float | None = None,
    ) -> Observation:
        """Fetch and normalize the current weather.

        The whole call, connection setup included, runs under a single
        deadline. When it expires the request is cancelled and the client
        closed, which releases the underlying connection.

        Args:
            lat: Latitude, defaults to the configured one
            lon: Longitude, defaults to the configured one
            timeout: Budget in seconds, defaults to the configured one

        Returns:
            Normalized observation

        Raises:
            ProviderTimeoutError: If the budget elapses
            ProviderAPIError: If the provider returns a non-2xx status
            ProviderError: On network failures or an unreadable body
        """
        budget = self._timeout if timeout is None else timeout
        params: dict[str, str | float] = {
            "lat": self._latitude if lat is None else lat,
            "lon": self._longitude if lon is None else lon,
            "appid": self._api_key,
            "units": self._units,
        }

        with provider_duration.time():
            try:
                async with asyncio.timeout(budget):
                    async with httpx.AsyncClient(timeout=budget) as client:
                        response = await client.get(self._base_url, params=params)

            except (TimeoutError, httpx.TimeoutException) as e:
                provider_requests.labels(status="timeout").inc()
                raise ProviderTimeoutError(
                    f"Weather provider request timed out after {budget}s"
                ) from e

            except httpx.RequestError as e:
                provider_requests.labels(status="error").inc()
                raise ProviderError(f"Weather provider request failed: {e}") from e

        if not response.is_success:
            provider_requests.labels(status="error").inc()
            raise ProviderAPIError(response.status_code, response.text)

        try:
            payload = response.json()
        except ValueError as e:
            provider_requests.labels(status="error").inc()
            raise ProviderError("Weather provider returned invalid JSON") from e

        if not isinstance(payload, dict):
            provider_requests.labels(status="error").inc()
            raise ProviderError("Weather provider returned a non-object JSON body")

        provider_requests.labels(status="success").inc()
        return normalize(payload, self._location)

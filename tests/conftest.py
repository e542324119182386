"""Test fixtures."""

import asyncio
from datetime import UTC, datetime

import pytest

from meteo_stream.api.schemas import Observation
from meteo_stream.config import Settings
from meteo_stream.services.hub import BroadcastHub
from meteo_stream.services.provider import OpenWeatherClient, ProviderAPIError
from meteo_stream.services.store import MemoryObservationStore

PROVIDER_URL = "https://weather.test/data/2.5/weather"

SAMPLE_PAYLOAD = {
    "coord": {"lon": 13.41, "lat": 52.52},
    "weather": [{"id": 800, "main": "Clear", "description": "clear sky"}],
    "main": {"temp": 30.1, "humidity": 40},
    "wind": {"speed": 5.2, "deg": 180},
    "dt": 1760000000,
    "name": "Berlin",
}


class FakeProviderClient:
    """Stands in for OpenWeatherClient, replaying scripted results."""

    def __init__(self, *results: Observation | Exception, delay: float = 0.0) -> None:
        self._results = list(results)
        self._delay = delay
        self.calls = 0

    async def fetch_observation(self) -> Observation:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        # The last scripted result repeats forever
        result = self._results[min(self.calls, len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


def make_observation(**overrides: object) -> Observation:
    values: dict[str, object] = {
        "timestamp": datetime(2025, 10, 9, 12, 0, tzinfo=UTC),
        "location": "berlin",
        "temperature": 30.1,
        "windSpeed": 5.2,
        "windDirection": 180.0,
        "conditionCode": 800,
        "raw": SAMPLE_PAYLOAD,
    }
    values.update(overrides)
    return Observation(**values)  # type: ignore[arg-type]


def provider_failure() -> ProviderAPIError:
    return ProviderAPIError(500, "Internal Server Error")


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        provider_url=PROVIDER_URL,
        provider_api_key="test-key",
        latitude=52.52,
        longitude=13.41,
        location_key="berlin",
        request_timeout_ms=1000,
        poll_interval_seconds=60,
        max_retries=2,
        retry_base_ms=0,
        retry_jitter_ms=0,
        retention_days=1,
        subscriber_queue_size=10,
        shutdown_timeout_seconds=1.0,
        log_level="DEBUG",
        log_format="text",
    )


@pytest.fixture
def open_weather_client(settings: Settings) -> OpenWeatherClient:
    """Create test provider client."""
    return OpenWeatherClient(settings)


@pytest.fixture
def store(settings: Settings) -> MemoryObservationStore:
    """Create an observation store that has not been set up yet."""
    return MemoryObservationStore(settings)


@pytest.fixture
def hub() -> BroadcastHub:
    """Create test broadcast hub."""
    return BroadcastHub(queue_size=10)

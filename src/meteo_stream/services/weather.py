"""Weather service running poll cycles against provider, store and hub."""

import asyncio
from datetime import UTC, datetime

import structlog
from prometheus_client import Counter

from meteo_stream.api.schemas import Observation, ObservationIn, ServiceHealth, WeatherAlert
from meteo_stream.config import Settings
from meteo_stream.services.hub import BroadcastHub
from meteo_stream.services.provider import OpenWeatherClient
from meteo_stream.services.retry import RetryExhaustedError, RetryPolicy, with_retry
from meteo_stream.services.store import ObservationStore, StoreError

logger = structlog.get_logger()

UPDATE_EVENT = "weather_update"
ALERT_EVENT = "weather_alert"

# Metrics
poll_cycles = Counter("poll_cycles_total", "Completed poll cycles", ["outcome"])


def check_thresholds(observation: Observation, settings: Settings) -> list[WeatherAlert]:
    """Return the alerts an observation triggers under the configured thresholds."""
    checks = [
        ("temperature_high", "temperature", settings.alert_temperature_high, 1),
        ("temperature_low", "temperature", settings.alert_temperature_low, -1),
        ("wind_speed_high", "windSpeed", settings.alert_wind_speed_high, 1),
    ]
    alerts = []
    for kind, field, threshold, direction in checks:
        value = getattr(observation, field)
        if threshold is None or value is None:
            continue
        if (value - threshold) * direction >= 0:
            alerts.append(
                WeatherAlert(
                    kind=kind,
                    field=field,
                    value=value,
                    threshold=threshold,
                    location=observation.location,
                    timestamp=observation.timestamp,
                )
            )
    return alerts


class WeatherService:
    """Runs fetch, persist and publish for one poll cycle, and answers queries."""

    def __init__(
        self,
        settings: Settings,
        client: OpenWeatherClient,
        store: ObservationStore,
        hub: BroadcastHub,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize service with its collaborators."""
        self._settings = settings
        self._client = client
        self._store = store
        self._hub = hub
        self._retry_policy = retry_policy or RetryPolicy.from_settings(settings)

    async def poll_once(self) -> Observation | None:
        """Execute one poll cycle.

        Persisting and publishing run concurrently once the fetch succeeds; a
        store failure does not stop the publish.

        Returns:
            The fetched observation, or None when every attempt failed
        """
        log = logger.bind(location=self._settings.resolved_location)

        try:
            observation = await with_retry(
                self._client.fetch_observation,
                self._settings.max_retries,
                self._retry_policy,
            )
        except RetryExhaustedError as e:
            poll_cycles.labels(outcome="fetch_failed").inc()
            log.error(
                "Poll cycle skipped, provider unavailable",
                attempts=e.attempts,
                error=str(e.last_error),
            )
            return None

        stored = await self._deliver(observation)
        poll_cycles.labels(outcome="ok" if stored else "store_failed").inc()
        log.info(
            "Poll cycle completed",
            temperature=observation.temperature,
            condition_code=observation.conditionCode,
            persisted=stored is not None,
        )
        return observation

    async def ingest(self, reading: ObservationIn) -> tuple[Observation, bool]:
        """Accept a pushed reading and fan it out like a polled one.

        The capture time defaults to now and the location to the configured
        one. Fields outside the model end up in ``raw``.

        Returns:
            The stored observation (or the unsaved one on store failure) and
            whether it was persisted
        """
        observation = Observation(
            timestamp=reading.timestamp or datetime.now(UTC),
            location=reading.location or self._settings.resolved_location,
            temperature=reading.temperature,
            windSpeed=reading.windSpeed,
            windDirection=reading.windDirection,
            conditionCode=reading.conditionCode,
            raw=reading.model_dump(mode="json", exclude_none=True),
        )
        stored = await self._deliver(observation)
        logger.info(
            "Pushed reading accepted",
            location=observation.location,
            temperature=observation.temperature,
            persisted=stored is not None,
        )
        return stored or observation, stored is not None

    async def _deliver(self, observation: Observation) -> Observation | None:
        """Persist and publish concurrently."""
        stored, _ = await asyncio.gather(
            self._persist(observation),
            self._publish(observation),
        )
        return stored

    async def _persist(self, observation: Observation) -> Observation | None:
        try:
            stored = await self._store.insert(observation)
        except StoreError as e:
            logger.error("Failed to persist observation", error=str(e))
            return None
        logger.debug("Observation persisted", observation_id=stored.id)
        return stored

    async def _publish(self, observation: Observation) -> None:
        payload = observation.model_dump(mode="json")
        delivered = self._hub.publish(UPDATE_EVENT, payload)
        for alert in check_thresholds(observation, self._settings):
            logger.warning(
                "Weather threshold crossed",
                kind=alert.kind,
                value=alert.value,
                threshold=alert.threshold,
            )
            self._hub.publish(ALERT_EVENT, alert.model_dump(mode="json"))
        logger.debug("Observation published", subscribers=delivered)

    async def latest(self, location: str | None = None) -> Observation | None:
        """Most recent stored observation."""
        return await self._store.most_recent(location)

    async def history(self, location: str | None = None, limit: int = 100) -> list[Observation]:
        """Stored observations, newest first."""
        return await self._store.query(location, limit)

    async def health(self) -> ServiceHealth:
        """Report whether the store is reachable."""
        try:
            ok = await self._store.ping()
        except StoreError:
            ok = False
        return ServiceHealth(ok=ok, timestamp=datetime.now(UTC))

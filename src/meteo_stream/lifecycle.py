"""Service runtime: builds the polling pipeline and tears it down in order."""

import asyncio
import time

import structlog

from meteo_stream.config import Settings
from meteo_stream.services.hub import BroadcastHub
from meteo_stream.services.provider import OpenWeatherClient
from meteo_stream.services.scheduler import PollScheduler
from meteo_stream.services.store import MemoryObservationStore, ObservationStore
from meteo_stream.services.weather import WeatherService

logger = structlog.get_logger()


class ServiceRuntime:
    """Owns the store, hub, weather service and scheduler for one process."""

    def __init__(
        self,
        settings: Settings,
        store: ObservationStore,
        hub: BroadcastHub,
        weather: WeatherService,
        scheduler: PollScheduler,
    ) -> None:
        self.settings = settings
        self.store = store
        self.hub = hub
        self.weather = weather
        self.scheduler = scheduler
        self._started = False
        self._shutdown_lock = asyncio.Lock()
        self._shut_down = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: OpenWeatherClient | None = None,
        store: ObservationStore | None = None,
        hub: BroadcastHub | None = None,
    ) -> "ServiceRuntime":
        """Wire up the pipeline, letting tests swap in any collaborator."""
        store = store or MemoryObservationStore(settings)
        hub = hub or BroadcastHub(queue_size=settings.subscriber_queue_size)
        weather = WeatherService(
            settings,
            client or OpenWeatherClient(settings),
            store,
            hub,
        )
        scheduler = PollScheduler(weather.poll_once, settings.poll_interval_seconds)
        return cls(settings, store, hub, weather, scheduler)

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down

    async def start(self) -> None:
        """Prepare the store, then begin polling."""
        if self._started:
            return
        self._started = True
        await self.store.setup()
        self.scheduler.start()
        logger.info(
            "Service started",
            location=self.settings.resolved_location,
            poll_interval_seconds=self.settings.poll_interval_seconds,
        )

    async def shutdown(self) -> None:
        """Stop scheduling, close the hub, then close the store.

        Safe to call more than once. The scheduler gets whatever is left of
        ``shutdown_timeout_seconds`` to drain; later steps do not block.
        """
        async with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True
            started = time.monotonic()
            budget = self.settings.shutdown_timeout_seconds
            logger.info("Service shutting down", timeout_seconds=budget)

            await self.scheduler.stop(timeout=budget)
            self.hub.close()

            remaining = max(0.1, budget - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self.store.close(), timeout=remaining)
            except TimeoutError:
                logger.error("Timed out closing observation store")

            logger.info(
                "Service stopped",
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )

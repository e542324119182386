"""Observation store with automatic expiry."""

from __future__ import annotations

import abc
import time
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

import structlog
from cachetools import TTLCache
from prometheus_client import Counter, Gauge

from meteo_stream.api.schemas import Observation
from meteo_stream.config import Settings

logger = structlog.get_logger()

SECONDS_PER_DAY = 86400
MAX_QUERY_LIMIT = 1000
EPOCH = datetime.fromtimestamp(0, tz=UTC)

# Metrics
store_inserts = Counter("store_inserts_total", "Observation inserts", ["status"])
store_size_gauge = Gauge("store_size", "Current number of stored observations")


class StoreError(Exception):
    """Raised when the store cannot complete an operation."""


class ObservationStore(abc.ABC):
    """Persistence contract used by the poll cycle and the query API."""

    @abc.abstractmethod
    async def setup(self) -> None:
        """Prepare the store, including its retention window."""

    @abc.abstractmethod
    async def insert(self, observation: Observation) -> Observation:
        """Persist one observation and return it with id and timestamp set."""

    @abc.abstractmethod
    async def most_recent(self, location: str | None = None) -> Observation | None:
        """Return the observation with the latest timestamp."""

    @abc.abstractmethod
    async def query(self, location: str | None = None, limit: int = 100) -> list[Observation]:
        """Return up to ``limit`` observations, newest first."""

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Report whether the store is usable."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the store connection."""


class MemoryObservationStore(ObservationStore):
    """In-process document store backed by a TTL cache.

    Records expire ``retention_days`` after insertion. Expiry is lazy: the
    cache drops stale entries when it is next touched, so callers must not
    rely on a record disappearing at an exact instant.
    """

    def __init__(
        self,
        settings: Settings,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize store with settings."""
        self._settings = settings
        self._timer = timer
        self._records: TTLCache[str, Observation] | None = None
        self._closed = False

    @property
    def retention_seconds(self) -> float:
        return self._settings.retention_days * SECONDS_PER_DAY

    async def setup(self) -> None:
        if self._records is not None:
            return
        self._records = TTLCache(
            maxsize=self._settings.store_max_size,
            ttl=self.retention_seconds,
            timer=self._timer,
        )
        logger.info(
            "Observation store ready",
            retention_days=self._settings.retention_days,
            max_size=self._settings.store_max_size,
        )

    def _live_records(self) -> TTLCache[str, Observation]:
        if self._closed:
            raise StoreError("Observation store is closed")
        if self._records is None:
            raise StoreError("Observation store has not been set up")
        self._records.expire()
        store_size_gauge.set(len(self._records))
        return self._records

    async def insert(self, observation: Observation) -> Observation:
        try:
            records = self._live_records()
        except StoreError:
            store_inserts.labels(status="error").inc()
            raise

        stored = observation.model_copy(
            update={
                "id": observation.id or uuid.uuid4().hex,
                "timestamp": observation.timestamp or datetime.now(UTC),
            }
        )
        records[stored.id] = stored
        store_inserts.labels(status="success").inc()
        store_size_gauge.set(len(records))
        return stored

    def _select(self, location: str | None) -> list[Observation]:
        records = self._live_records()
        selected = [
            obs for obs in records.values() if location is None or obs.location == location
        ]
        # insert() guarantees every stored record has a timestamp
        selected.sort(key=lambda obs: obs.timestamp or EPOCH, reverse=True)
        return selected

    async def most_recent(self, location: str | None = None) -> Observation | None:
        selected = self._select(location)
        return selected[0] if selected else None

    async def query(self, location: str | None = None, limit: int = 100) -> list[Observation]:
        if not 1 <= limit <= MAX_QUERY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_QUERY_LIMIT}")
        return self._select(location)[:limit]

    @property
    def size(self) -> int:
        """Return current number of live records."""
        return len(self._live_records())

    async def ping(self) -> bool:
        return not self._closed and self._records is not None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._records is not None:
            self._records.clear()
        store_size_gauge.set(0)
        logger.info("Observation store closed")

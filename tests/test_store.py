"""Tests for the observation store."""

from datetime import UTC, datetime, timedelta

import pytest

from meteo_stream.config import Settings
from meteo_stream.services.store import MemoryObservationStore, StoreError
from tests.conftest import make_observation

T0 = datetime(2025, 10, 9, 12, 0, tzinfo=UTC)


class FakeTimer:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestMemoryObservationStore:
    """Tests for MemoryObservationStore."""

    @pytest.mark.asyncio
    async def test_insert_assigns_id(self, store: MemoryObservationStore) -> None:
        """Test insert returns the record with an identity."""
        await store.setup()
        stored = await store.insert(make_observation())

        assert stored.id is not None
        assert stored.temperature == 30.1
        assert store.size == 1

    @pytest.mark.asyncio
    async def test_insert_assigns_missing_timestamp(self, store: MemoryObservationStore) -> None:
        """Test the store fills in a timestamp when none was captured."""
        await store.setup()
        before = datetime.now(UTC)

        stored = await store.insert(make_observation(timestamp=None))

        assert stored.timestamp is not None
        assert stored.timestamp >= before

    @pytest.mark.asyncio
    async def test_most_recent_by_timestamp(self, store: MemoryObservationStore) -> None:
        """Test most_recent follows timestamps, not insertion order."""
        await store.setup()
        for offset in (2, 3, 1):
            await store.insert(
                make_observation(timestamp=T0 + timedelta(minutes=offset), temperature=offset)
            )

        latest = await store.most_recent()

        assert latest is not None
        assert latest.timestamp == T0 + timedelta(minutes=3)
        assert latest.temperature == 3

    @pytest.mark.asyncio
    async def test_naive_and_aware_timestamps_mix(self, store: MemoryObservationStore) -> None:
        """Test a naive capture time is read as UTC and ordered with aware ones."""
        await store.setup()
        await store.insert(make_observation(timestamp=T0, temperature=1))
        await store.insert(
            make_observation(timestamp=datetime(2025, 10, 9, 12, 5), temperature=2)
        )

        latest = await store.most_recent()
        history = await store.query()

        assert latest is not None
        assert latest.temperature == 2
        assert latest.timestamp == T0 + timedelta(minutes=5)
        assert [obs.temperature for obs in history] == [2, 1]

    @pytest.mark.asyncio
    async def test_most_recent_empty(self, store: MemoryObservationStore) -> None:
        """Test an empty store has no latest record."""
        await store.setup()
        assert await store.most_recent() is None

    @pytest.mark.asyncio
    async def test_query_newest_first_with_limit(self, store: MemoryObservationStore) -> None:
        """Test query orders newest first and honours the limit."""
        await store.setup()
        for minute in range(5):
            await store.insert(make_observation(timestamp=T0 + timedelta(minutes=minute)))

        records = await store.query(limit=3)

        assert [r.timestamp for r in records] == [
            T0 + timedelta(minutes=4),
            T0 + timedelta(minutes=3),
            T0 + timedelta(minutes=2),
        ]

    @pytest.mark.asyncio
    async def test_query_filters_by_location(self, store: MemoryObservationStore) -> None:
        """Test location filtering for query and most_recent."""
        await store.setup()
        await store.insert(make_observation(location="berlin", timestamp=T0))
        await store.insert(make_observation(location="vienna", timestamp=T0 + timedelta(hours=1)))

        berlin = await store.query(location="berlin")
        assert [r.location for r in berlin] == ["berlin"]

        latest_berlin = await store.most_recent(location="berlin")
        assert latest_berlin is not None
        assert latest_berlin.timestamp == T0

        assert await store.query(location="paris") == []

    @pytest.mark.asyncio
    async def test_query_limit_bounds(self, store: MemoryObservationStore) -> None:
        """Test limits outside 1..1000 are rejected."""
        await store.setup()
        with pytest.raises(ValueError):
            await store.query(limit=0)
        with pytest.raises(ValueError):
            await store.query(limit=1001)

    @pytest.mark.asyncio
    async def test_retention_expiry(self, settings: Settings) -> None:
        """Test records disappear once older than the retention window."""
        timer = FakeTimer()
        store = MemoryObservationStore(settings, timer=timer)
        await store.setup()
        await store.insert(make_observation(timestamp=T0))

        timer.now = store.retention_seconds - 1
        await store.insert(make_observation(timestamp=T0 + timedelta(days=1)))
        assert len(await store.query()) == 2

        timer.now = store.retention_seconds + 1
        records = await store.query()
        assert [r.timestamp for r in records] == [T0 + timedelta(days=1)]

    @pytest.mark.asyncio
    async def test_insert_before_setup(self, store: MemoryObservationStore) -> None:
        """Test using the store before setup raises StoreError."""
        with pytest.raises(StoreError):
            await store.insert(make_observation())

    @pytest.mark.asyncio
    async def test_closed_store(self, store: MemoryObservationStore) -> None:
        """Test operations after close raise StoreError."""
        await store.setup()
        assert await store.ping() is True

        await store.close()
        await store.close()

        assert await store.ping() is False
        with pytest.raises(StoreError):
            await store.insert(make_observation())
        with pytest.raises(StoreError):
            await store.most_recent()

"""Tests for the broadcast hub."""

import asyncio

import pytest

from meteo_stream.services.hub import (
    SHUTDOWN_EVENT,
    BroadcastHub,
    HubClosedError,
    SubscriberState,
)


async def drain(subscriber, count: int) -> list:
    return [await asyncio.wait_for(subscriber.receive(), timeout=1) for _ in range(count)]


class TestBroadcastHub:
    """Tests for BroadcastHub."""

    @pytest.mark.asyncio
    async def test_publish_reaches_all_subscribers(self, hub: BroadcastHub) -> None:
        """Test every open subscriber gets the event."""
        first = hub.subscribe()
        second = hub.subscribe()

        delivered = hub.publish("weather_update", {"temperature": 30.1})

        assert delivered == 2
        for subscriber in (first, second):
            event = await asyncio.wait_for(subscriber.receive(), timeout=1)
            assert event.event == "weather_update"
            assert event.data == {"temperature": 30.1}

    @pytest.mark.asyncio
    async def test_per_subscriber_fifo(self, hub: BroadcastHub) -> None:
        """Test events arrive in publish order."""
        subscriber = hub.subscribe()
        for n in range(5):
            hub.publish("weather_update", {"n": n})

        events = await drain(subscriber, 5)

        assert [e.data["n"] for e in events] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_no_replay(self, hub: BroadcastHub) -> None:
        """Test a subscriber joining after N publishes only sees N+1 onwards."""
        early = hub.subscribe()
        for n in range(3):
            hub.publish("weather_update", {"n": n})

        late = hub.subscribe()
        hub.publish("weather_update", {"n": 3})

        assert late.pending == 1
        event = await asyncio.wait_for(late.receive(), timeout=1)
        assert event.data == {"n": 3}
        assert early.pending == 4

    @pytest.mark.asyncio
    async def test_slow_subscriber_isolated(self) -> None:
        """Test a stalled subscriber is dropped without affecting others."""
        hub = BroadcastHub(queue_size=2)
        stalled = hub.subscribe()
        healthy = hub.subscribe()
        received = []

        async def consume() -> None:
            while (event := await healthy.receive()) is not None:
                received.append(event.data["n"])

        consumer = asyncio.create_task(consume())
        for n in range(10):
            assert hub.publish("weather_update", {"n": n}) >= 1
            await asyncio.sleep(0.01)

        await asyncio.sleep(0.01)
        hub.unsubscribe(healthy)
        await asyncio.wait_for(consumer, timeout=1)

        assert received == list(range(10))
        assert stalled.state is SubscriberState.CLOSED
        assert hub.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_overflow_drop_keeps_publishing(self) -> None:
        """Test the publish that overflows a queue still completes for the rest."""
        hub = BroadcastHub(queue_size=1)
        stalled = hub.subscribe()
        healthy = hub.subscribe()

        assert hub.publish("weather_update", {"n": 0}) == 2
        first = await asyncio.wait_for(healthy.receive(), timeout=1)

        assert hub.publish("weather_update", {"n": 1}) == 1
        second = await asyncio.wait_for(healthy.receive(), timeout=1)

        assert [first.data["n"], second.data["n"]] == [0, 1]
        assert stalled.state is SubscriberState.CLOSED
        assert hub.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self, hub: BroadcastHub) -> None:
        """Test explicit removal is idempotent and stops delivery."""
        subscriber = hub.subscribe()

        hub.unsubscribe(subscriber)
        hub.unsubscribe(subscriber)

        assert hub.subscriber_count == 0
        assert hub.publish("weather_update", {}) == 0
        assert await subscriber.receive() is None

    @pytest.mark.asyncio
    async def test_receive_wakes_on_close(self, hub: BroadcastHub) -> None:
        """Test a waiting receiver returns None when its subscriber closes."""
        subscriber = hub.subscribe()
        waiter = asyncio.create_task(subscriber.receive())
        await asyncio.sleep(0)

        hub.unsubscribe(subscriber)

        assert await asyncio.wait_for(waiter, timeout=1) is None

    @pytest.mark.asyncio
    async def test_close(self, hub: BroadcastHub) -> None:
        """Test close notifies subscribers and rejects new ones."""
        subscriber = hub.subscribe()
        hub.publish("weather_update", {"n": 1})

        hub.close()
        hub.close()

        assert hub.is_closed
        with pytest.raises(HubClosedError):
            hub.subscribe()

        events = await drain(subscriber, 2)
        assert [e.event for e in events] == ["weather_update", SHUTDOWN_EVENT]
        assert await subscriber.receive() is None

"""Fan-out of live events to subscriber connections."""

import asyncio
import enum
import uuid
from typing import Any

import structlog
from prometheus_client import Counter, Gauge

from meteo_stream.api.schemas import Event

logger = structlog.get_logger()

SHUTDOWN_EVENT = "shutdown"

# Metrics
hub_subscribers = Gauge("hub_subscribers", "Currently open subscribers")
hub_events = Counter("hub_events_published_total", "Events published", ["event"])
hub_dropped = Counter("hub_subscribers_dropped_total", "Subscribers dropped on delivery failure")


class HubClosedError(Exception):
    """Raised when subscribing to a hub that is shutting down."""


class SubscriberDeliveryError(Exception):
    """Delivery to a single subscriber failed. Never leaves the hub."""


class SubscriberState(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class Subscriber:
    """One live connection as seen by the hub.

    Events wait in a bounded FIFO until the connection's sender drains them
    with :meth:`receive`. A full queue means the consumer is too slow and the
    hub drops it.
    """

    def __init__(self, queue_size: int) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.state = SubscriberState.OPEN
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=queue_size)
        self._closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self.state is SubscriberState.OPEN

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def deliver(self, event: Event) -> None:
        if not self.is_open:
            raise SubscriberDeliveryError(f"subscriber {self.id} is closed")
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull as e:
            raise SubscriberDeliveryError(
                f"subscriber {self.id} has {self._queue.qsize()} undelivered events"
            ) from e

    async def receive(self) -> Event | None:
        """Wait for the next event; None once closed and drained."""
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if not self.is_open:
                return None
            getter = asyncio.ensure_future(self._queue.get())
            closed = asyncio.ensure_future(self._closed.wait())
            try:
                done, _ = await asyncio.wait(
                    {getter, closed}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closed.cancel()
                if not getter.done():
                    getter.cancel()
            if getter in done:
                return getter.result()

    def close(self) -> None:
        self.state = SubscriberState.CLOSED
        self._closed.set()


class BroadcastHub:
    """Owns the set of live subscribers and publishes events to all of them."""

    def __init__(self, queue_size: int = 100) -> None:
        self._queue_size = queue_size
        self._subscribers: dict[str, Subscriber] = {}
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def subscribe(self) -> Subscriber:
        """Register a new open subscriber.

        Raises:
            HubClosedError: If the hub is shutting down
        """
        if self._closed:
            raise HubClosedError("Broadcast hub is closed")
        subscriber = Subscriber(self._queue_size)
        self._subscribers[subscriber.id] = subscriber
        hub_subscribers.set(len(self._subscribers))
        logger.info("Subscriber connected", subscriber_id=subscriber.id)
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove a subscriber; unknown or already removed ones are ignored."""
        subscriber.close()
        if self._subscribers.pop(subscriber.id, None) is not None:
            hub_subscribers.set(len(self._subscribers))
            logger.info("Subscriber disconnected", subscriber_id=subscriber.id)

    def publish(self, event: str, data: Any = None) -> int:
        """Deliver an event to every open subscriber without waiting on any.

        Subscribers that cannot accept the event are closed and removed.

        Returns:
            Number of subscribers the event was queued for
        """
        envelope = Event(event=event, data=data)
        delivered = 0
        for subscriber in list(self._subscribers.values()):
            try:
                subscriber.deliver(envelope)
            except SubscriberDeliveryError as e:
                hub_dropped.inc()
                logger.warning(
                    "Dropping subscriber after failed delivery",
                    subscriber_id=subscriber.id,
                    event_name=event,
                    error=str(e),
                )
                self.unsubscribe(subscriber)
                continue
            delivered += 1
        hub_events.labels(event=event).inc()
        logger.debug("Event published", event_name=event, delivered=delivered)
        return delivered

    def close(self) -> None:
        """Stop accepting subscribers and tell existing ones to go away."""
        if self._closed:
            return
        self._closed = True
        for subscriber in list(self._subscribers.values()):
            try:
                subscriber.deliver(Event(event=SHUTDOWN_EVENT))
            except SubscriberDeliveryError as e:
                logger.debug(
                    "Shutdown notice not delivered", subscriber_id=subscriber.id, error=str(e)
                )
            subscriber.close()
        self._subscribers.clear()
        hub_subscribers.set(0)
        logger.info("Broadcast hub closed")

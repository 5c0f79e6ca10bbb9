"""
Fan-out of discovery events to live subscribers.
"""
import asyncio
import itertools
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog  # type: ignore[import-not-found]

from ..models.discovery import DiscoveryEvent
from .exceptions import SubscriberClosed

logger = structlog.get_logger(__name__)

_subscriber_ids = itertools.count(1)

# Wakes readers blocked on a detached subscriber
_CLOSED = object()


class Subscriber:
    """One live consumer: a bounded queue of pending events."""

    def __init__(self, capacity: int):
        self.id = next(_subscriber_ids)
        self.capacity = capacity
        self.dropped = 0
        self.closed = False
        self._queue: asyncio.Queue[DiscoveryEvent | object] = asyncio.Queue(maxsize=capacity)

    @property
    def pending(self) -> int:
        if self.closed:
            return 0
        return self._queue.qsize()

    def offer(self, event: DiscoveryEvent) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self) -> DiscoveryEvent:
        """Wait for the next event. Raises SubscriberClosed once detached."""
        if self.closed and self._queue.empty():
            raise SubscriberClosed(self.id)
        return self._unwrap(await self._queue.get())

    def get_nowait(self) -> DiscoveryEvent:
        return self._unwrap(self._queue.get_nowait())

    def _unwrap(self, item: DiscoveryEvent | object) -> DiscoveryEvent:
        if item is _CLOSED:
            # Leave the marker for any other reader still waiting.
            self._queue.put_nowait(_CLOSED)
            raise SubscriberClosed(self.id)
        return item  # type: ignore[return-value]

    def close(self) -> None:
        self.closed = True
        # Release buffered events; nothing reads them after detach.
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> "Subscriber":
        return self

    async def __anext__(self) -> DiscoveryEvent:
        try:
            return await self.get()
        except SubscriberClosed:
            raise StopAsyncIteration from None

    def __repr__(self) -> str:
        return f"<Subscriber id={self.id} pending={self.pending} dropped={self.dropped}>"


class BroadcastHub:
    """
    Holds the registry of subscribers and relays every published event to all
    of them.

    Publishing never blocks: a subscriber whose queue is full misses that
    event and nobody else is affected. Registry changes happen under a lock
    and publish iterates over a snapshot taken under the same lock, so it
    never observes a half-modified registry.
    """

    def __init__(self, queue_capacity: int = 100):
        self.queue_capacity = queue_capacity
        self._subscribers: dict[int, Subscriber] = {}
        self._lock = threading.Lock()
        self.logger = logger.bind(component="BroadcastHub")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def attach(self) -> Subscriber:
        subscriber = Subscriber(self.queue_capacity)
        with self._lock:
            self._subscribers[subscriber.id] = subscriber
            count = len(self._subscribers)
        self.logger.info("Subscriber attached", subscriber_id=subscriber.id, subscribers=count)
        return subscriber

    def detach(self, subscriber: Subscriber) -> None:
        with self._lock:
            removed = self._subscribers.pop(subscriber.id, None)
            count = len(self._subscribers)
        subscriber.close()
        if removed is not None:
            self.logger.info("Subscriber detached", subscriber_id=subscriber.id, subscribers=count, dropped=subscriber.dropped)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[Subscriber]:
        """Attach for the duration of the block."""
        subscriber = self.attach()
        try:
            yield subscriber
        finally:
            self.detach(subscriber)

    def publish(self, event: DiscoveryEvent) -> int:
        """Deliver `event` to every subscriber with room for it. Returns the delivery count."""
        with self._lock:
            snapshot = list(self._subscribers.values())
        delivered = 0
        for subscriber in snapshot:
            if subscriber.offer(event):
                delivered += 1
            else:
                self.logger.debug("Subscriber queue full, event dropped", subscriber_id=subscriber.id, dropped=subscriber.dropped)
        return delivered

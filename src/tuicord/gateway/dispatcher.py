"""Fan-out of dispatch events to subscribers with bounded buffers."""

from __future__ import annotations

import itertools
from collections.abc import Callable

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ..logging import get_logger
from .errors import SubscriberOverflow
from .events import DispatchEvent

logger = get_logger(__name__)

DEFAULT_SUBSCRIBER_CAPACITY = 256

type EventSink = Callable[[DispatchEvent], None]


class EventSubscription:
    """Async iterator over dispatch events, in arrival order.

    A subscriber that falls `capacity` events behind is cut off: it still
    receives everything buffered before the cut, then `SubscriberOverflow`.
    """

    def __init__(
        self,
        subscriber_id: int,
        capacity: int,
        dispatcher: EventDispatcher,
    ) -> None:
        self.id = subscriber_id
        self.capacity = capacity
        send, receive = anyio.create_memory_object_stream[DispatchEvent](capacity)
        self._send: MemoryObjectSendStream[DispatchEvent] = send
        self._receive: MemoryObjectReceiveStream[DispatchEvent] = receive
        self._dispatcher = dispatcher
        self.overflowed = False

    def _offer(self, event: DispatchEvent) -> bool:
        try:
            self._send.send_nowait(event)
        except anyio.WouldBlock:
            self.overflowed = True
            self._send.close()
            return False
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            return False
        return True

    def _finish(self) -> None:
        self._send.close()

    async def receive(self) -> DispatchEvent:
        try:
            return await self._receive.receive()
        except anyio.EndOfStream:
            if self.overflowed:
                raise SubscriberOverflow(self.capacity) from None
            raise

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> DispatchEvent:
        try:
            return await self.receive()
        except anyio.EndOfStream:
            raise StopAsyncIteration from None
        except anyio.ClosedResourceError:
            raise StopAsyncIteration from None

    def close(self) -> None:
        self._dispatcher._remove(self)
        self._send.close()
        self._receive.close()

    async def __aenter__(self) -> EventSubscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class EventDispatcher:
    def __init__(self, *, capacity: int = DEFAULT_SUBSCRIBER_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("subscriber capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: dict[int, EventSubscription] = {}
        self._sinks: list[EventSink] = []
        self._ids = itertools.count(1)
        self._closed = False
        self.published = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def add_sink(self, sink: EventSink) -> None:
        """Register a synchronous consumer that sees every event before subscribers."""
        self._sinks.append(sink)

    def subscribe(self, capacity: int | None = None) -> EventSubscription:
        """New subscription buffering up to `capacity` events (default when None)."""
        if capacity is None:
            capacity = self._capacity
        elif capacity < 1:
            raise ValueError("subscriber capacity must be at least 1")
        subscription = EventSubscription(next(self._ids), capacity, self)
        if self._closed:
            subscription._finish()
            return subscription
        self._subscribers[subscription.id] = subscription
        return subscription

    def _remove(self, subscription: EventSubscription) -> None:
        self._subscribers.pop(subscription.id, None)

    def publish(self, event: DispatchEvent) -> None:
        if self._closed:
            return
        self.published += 1
        for sink in self._sinks:
            try:
                sink(event)
            except Exception:  # noqa: BLE001
                logger.exception("dispatch.sink_error", event=event.event_name)
        for subscription in list(self._subscribers.values()):
            if subscription._offer(event):
                continue
            self._remove(subscription)
            if subscription.overflowed:
                logger.warning(
                    "dispatch.subscriber_overflow",
                    subscriber=subscription.id,
                    capacity=subscription.capacity,
                )

    def close(self) -> None:
        """Release every subscriber; their iterators end after draining."""
        self._closed = True
        for subscription in list(self._subscribers.values()):
            subscription._finish()
        self._subscribers.clear()

"""
Publish/subscribe channels for server-push events.

Each event kind has its own channel. A Subscription attaches to one or more
channels (or to all of them) and is consumed as an async iterator; it carries
its own cancellation, so a client that goes away detaches only itself.

Publishing never blocks the publisher: every subscription has a bounded
queue, and when a slow consumer's queue is full its oldest event is dropped.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from homedash.logging import get_logger

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256

_CLOSED = object()


@dataclass
class Event:
    """
    A single published event.

    Attributes:
        kind: Channel name (e.g., "started", "paused").
        data: Optional JSON-serializable payload.
        timestamp: When the event was published (UTC).
    """

    kind: str
    data: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class Subscription:
    """
    A consumer's view of one or more channels.

    Iterate with ``async for``; iteration ends after ``cancel()``.
    """

    def __init__(
        self,
        broker: EventBroker,
        kinds: frozenset[str] | None,
        maxsize: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.id = uuid.uuid4().hex
        self.kinds = kinds
        self.dropped = 0
        self._broker = broker
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _put(self, item: Any) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            if item is not _CLOSED:
                self.dropped += 1
                logger.warning(
                    "Subscriber queue full, dropping oldest event",
                    extra={"subscription": self.id, "dropped": self.dropped},
                )
        self._queue.put_nowait(item)

    def deliver(self, event: Event) -> None:
        if not self._cancelled:
            self._put(event)

    def cancel(self) -> None:
        """Detach from every channel and end iteration."""
        if self._cancelled:
            return
        self._cancelled = True
        self._broker._detach(self)
        self._put(_CLOSED)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Event:
        if self._cancelled:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED or self._cancelled:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: Any) -> None:
        self.cancel()


class EventBroker:
    """
    Registry of channels keyed by event kind.

    Example:
        >>> broker = EventBroker()
        >>> sub = broker.subscribe(["stopped"])
        >>> broker.publish(Event("stopped"))
        1
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._channels: dict[str, set[Subscription]] = {}
        # Subscriptions that receive every kind
        self._wildcard: set[Subscription] = set()

    def subscribe(self, kinds: Iterable[str] | None = None) -> Subscription:
        """
        Create a subscription.

        Args:
            kinds: Event kinds to receive; None receives every kind.

        Returns:
            A new Subscription.
        """
        kind_set = frozenset(kinds) if kinds is not None else None
        subscription = Subscription(self, kind_set, maxsize=self._queue_size)

        if kind_set is None:
            self._wildcard.add(subscription)
        else:
            for kind in kind_set:
                self._channels.setdefault(kind, set()).add(subscription)

        logger.debug(
            "Subscription created",
            extra={
                "subscription": subscription.id,
                "kinds": sorted(kind_set) if kind_set is not None else "*",
            },
        )
        return subscription

    def publish(self, event: Event) -> int:
        """
        Deliver an event to every subscription of its kind.

        Returns:
            Number of subscriptions the event was delivered to.
        """
        targets = self._channels.get(event.kind, set()) | self._wildcard
        for subscription in targets:
            subscription.deliver(event)
        return len(targets)

    def subscriber_count(self, kind: str | None = None) -> int:
        """Count subscriptions listening to ``kind`` (or all distinct ones)."""
        if kind is not None:
            return len(self._channels.get(kind, set()) | self._wildcard)
        distinct: set[Subscription] = set(self._wildcard)
        for subscriptions in self._channels.values():
            distinct |= subscriptions
        return len(distinct)

    def _detach(self, subscription: Subscription) -> None:
        self._wildcard.discard(subscription)
        for kind in list(self._channels):
            channel = self._channels[kind]
            channel.discard(subscription)
            if not channel:
                del self._channels[kind]

    def close(self) -> None:
        """Cancel every subscription."""
        subscriptions: set[Subscription] = set(self._wildcard)
        for channel in self._channels.values():
            subscriptions |= channel
        for subscription in subscriptions:
            subscription.cancel()

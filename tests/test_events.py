"""
Tests for the event channels.

This test module validates:
- Delivery by kind and wildcard subscriptions
- Per-subscriber ordering
- Cancellation detaching a single subscription
- Drop-oldest behavior of full queues
"""

from __future__ import annotations

import asyncio

import pytest

from homedash.events import Event, EventBroker

# =============================================================================
# Tests for Publishing
# =============================================================================


class TestPublish:
    """Tests for EventBroker.publish."""

    @pytest.mark.asyncio
    async def test_delivery_by_kind(self) -> None:
        """Test that subscribers receive only their kinds."""
        broker = EventBroker()
        stopped = broker.subscribe(["stopped"])
        started = broker.subscribe(["started"])

        assert broker.publish(Event("stopped")) == 1

        event = await asyncio.wait_for(anext(stopped), timeout=1)
        assert event.kind == "stopped"
        assert started._queue.empty()

    @pytest.mark.asyncio
    async def test_wildcard_subscription(self) -> None:
        """Test that a subscription without kinds receives everything."""
        broker = EventBroker()
        everything = broker.subscribe()

        broker.publish(Event("paused"))
        broker.publish(Event("seek", {"position": 12}))

        first = await asyncio.wait_for(anext(everything), timeout=1)
        second = await asyncio.wait_for(anext(everything), timeout=1)
        assert [first.kind, second.kind] == ["paused", "seek"]
        assert second.data == {"position": 12}

    @pytest.mark.asyncio
    async def test_order_preserved(self) -> None:
        """Test that events arrive in publish order."""
        broker = EventBroker()
        subscription = broker.subscribe(["timeposition"])

        for position in range(5):
            broker.publish(Event("timeposition", position))

        received = [
            (await asyncio.wait_for(anext(subscription), timeout=1)).data for _ in range(5)
        ]
        assert received == [0, 1, 2, 3, 4]

    def test_publish_without_subscribers(self) -> None:
        """Test that publishing to an empty channel is a no-op."""
        assert EventBroker().publish(Event("quit")) == 0

    def test_event_to_dict(self) -> None:
        """Test event serialization."""
        event = Event("status", {"property": "volume", "value": 50})
        data = event.to_dict()

        assert data["kind"] == "status"
        assert data["data"] == {"property": "volume", "value": 50}
        assert data["timestamp"] == event.timestamp.isoformat()


# =============================================================================
# Tests for Cancellation
# =============================================================================


class TestCancellation:
    """Tests for Subscription.cancel and EventBroker.close."""

    @pytest.mark.asyncio
    async def test_cancel_ends_iteration(self) -> None:
        """Test that cancel ends an active iteration."""
        broker = EventBroker()
        subscription = broker.subscribe(["stopped"])
        received: list[Event] = []

        async def consume() -> None:
            async for event in subscription:
                received.append(event)

        task = asyncio.create_task(consume())
        broker.publish(Event("stopped"))
        await asyncio.sleep(0.01)
        subscription.cancel()
        await asyncio.wait_for(task, timeout=1)

        assert len(received) == 1
        assert subscription.cancelled is True

    @pytest.mark.asyncio
    async def test_cancel_detaches_only_itself(self) -> None:
        """Test that cancelling one subscription leaves others attached."""
        broker = EventBroker()
        first = broker.subscribe(["stopped"])
        second = broker.subscribe(["stopped"])

        first.cancel()

        assert broker.subscriber_count("stopped") == 1
        assert broker.publish(Event("stopped")) == 1
        assert (await asyncio.wait_for(anext(second), timeout=1)).kind == "stopped"

    @pytest.mark.asyncio
    async def test_context_manager_cancels(self) -> None:
        """Test that leaving the context detaches the subscription."""
        broker = EventBroker()
        async with broker.subscribe(["seek"]) as subscription:
            assert broker.subscriber_count() == 1

        assert subscription.cancelled is True
        assert broker.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_close_cancels_all(self) -> None:
        """Test that closing the broker ends every subscription."""
        broker = EventBroker()
        subscriptions = [broker.subscribe(["stopped"]), broker.subscribe()]

        broker.close()

        assert all(subscription.cancelled for subscription in subscriptions)
        assert broker.subscriber_count() == 0
        with pytest.raises(StopAsyncIteration):
            await anext(subscriptions[0])


# =============================================================================
# Tests for Backpressure
# =============================================================================


class TestBackpressure:
    """Tests for bounded subscriber queues."""

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self) -> None:
        """Test that a slow consumer loses its oldest events, not the newest."""
        broker = EventBroker(queue_size=2)
        subscription = broker.subscribe(["timeposition"])

        for position in range(4):
            broker.publish(Event("timeposition", position))

        assert subscription.dropped == 2
        first = await asyncio.wait_for(anext(subscription), timeout=1)
        second = await asyncio.wait_for(anext(subscription), timeout=1)
        assert [first.data, second.data] == [2, 3]

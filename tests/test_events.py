"""Tests for daemon events and the event bus."""

import asyncio

import pytest

from voxd.controller import ControllerState
from voxd.errors import ErrorKind
from voxd.events import (
    DaemonError,
    Downloading,
    EventBus,
    InitProgress,
    Loading,
    Ready,
    StateChange,
    Transcription,
)


class TestEventSerialization:
    """Tests for event to_dict payloads."""

    def test_state_change(self):
        assert StateChange(ControllerState.LISTENING).to_dict() == {
            "type": "state_change",
            "state": "listening",
        }

    def test_transcription(self):
        assert Transcription("hello").to_dict() == {"type": "transcription", "text": "hello"}

    def test_init_progress_stages(self):
        """Test each init stage is tagged."""
        assert InitProgress(Downloading("whisper-base", 10, 100)).to_dict() == {
            "type": "init_progress",
            "stage": "downloading",
            "model": "whisper-base",
            "bytes": 10,
            "total": 100,
        }
        assert InitProgress(Loading("silero-vad")).to_dict() == {
            "type": "init_progress",
            "stage": "loading",
            "model": "silero-vad",
        }
        assert InitProgress(Ready()).to_dict() == {"type": "init_progress", "stage": "ready"}

    def test_daemon_error(self):
        event = DaemonError(ErrorKind.MODEL_MISSING, "gone", model_name="whisper-tiny")
        assert event.to_dict() == {
            "type": "error",
            "kind": "model_missing",
            "message": "gone",
            "model_name": "whisper-tiny",
        }


class TestEventBus:
    """Tests for EventBus."""

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            EventBus(capacity=0)

    def test_publish_without_subscribers(self):
        """Test publishing to nobody is fine."""
        assert EventBus().publish(Transcription("lost")) == 0

    def test_subscribers_see_same_order(self):
        """Test every subscriber receives events in publish order."""
        bus = EventBus()
        first = bus.subscribe()
        second = bus.subscribe()
        events = [Transcription(str(i)) for i in range(5)]

        for event in events:
            assert bus.publish(event) == 2

        for subscription in (first, second):
            assert [subscription.get_nowait() for _ in events] == events
            assert subscription.get_nowait() is None

    def test_late_subscriber_misses_earlier_events(self):
        bus = EventBus()
        bus.publish(Transcription("early"))
        subscription = bus.subscribe()

        assert subscription.get_nowait() is None

    def test_overflow_drops_oldest(self):
        """Test a full subscriber loses its oldest events, not the newest."""
        bus = EventBus(capacity=3)
        slow = bus.subscribe()

        for i in range(5):
            bus.publish(Transcription(str(i)))

        assert slow.dropped == 2
        assert len(slow) == 3
        assert [slow.get_nowait().text for _ in range(3)] == ["2", "3", "4"]

    def test_close_unsubscribes(self):
        bus = EventBus()
        subscription = bus.subscribe()
        assert bus.subscriber_count == 1

        subscription.close()
        subscription.close()

        assert subscription.closed
        assert bus.subscriber_count == 0
        assert bus.publish(Transcription("x")) == 0

    def test_async_iteration_ends_on_close(self):
        """Test iterating drains queued events, then stops when the bus closes."""

        async def _run():
            bus = EventBus()
            subscription = bus.subscribe()
            received = []

            async def consume():
                async for event in subscription:
                    received.append(event.text)

            consumer = asyncio.create_task(consume())
            bus.publish(Transcription("a"))
            await asyncio.sleep(0)
            bus.publish(Transcription("b"))
            bus.close()

            await asyncio.wait_for(consumer, 1.0)
            return received

        assert asyncio.run(_run()) == ["a", "b"]

    def test_get_waits_for_publish(self):
        """Test get() wakes up on a new event."""

        async def _run():
            bus = EventBus()
            subscription = bus.subscribe()
            waiter = asyncio.create_task(subscription.get())
            await asyncio.sleep(0)
            assert not waiter.done()

            bus.publish(Transcription("wake"))
            return await asyncio.wait_for(waiter, 1.0)

        assert asyncio.run(_run()) == Transcription("wake")

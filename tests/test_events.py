"""Tests for events.py - ThreadEventType, ThreadEvent, and EventBus."""

from __future__ import annotations

import asyncio

import pytest

from events import EventBus, ThreadEvent, ThreadEventType

# ---------------------------------------------------------------------------
# ThreadEventType enum
# ---------------------------------------------------------------------------


class TestThreadEventType:
    def test_all_expected_values_exist(self) -> None:
        assert {member.value for member in ThreadEventType} == {
            "tree_changed",
            "commit_state_changed",
            "focus_changed",
            "refresh_failed",
        }

    def test_is_str_enum(self) -> None:
        for member in ThreadEventType:
            assert isinstance(member, str)


# ---------------------------------------------------------------------------
# ThreadEvent
# ---------------------------------------------------------------------------


class TestThreadEvent:
    def test_creation_with_explicit_values(self) -> None:
        event = ThreadEvent(
            type=ThreadEventType.TREE_CHANGED,
            timestamp="2024-01-01T00:00:00+00:00",
            thread_id="drive-1",
            data={"reason": "refetched"},
        )
        assert event.type == ThreadEventType.TREE_CHANGED
        assert event.timestamp == "2024-01-01T00:00:00+00:00"
        assert event.thread_id == "drive-1"
        assert event.data == {"reason": "refetched"}

    def test_defaults(self) -> None:
        event = ThreadEvent(type=ThreadEventType.FOCUS_CHANGED)
        assert event.timestamp
        assert event.thread_id == ""
        assert event.data == {}

    def test_ids_are_monotonic(self) -> None:
        first = ThreadEvent(type=ThreadEventType.TREE_CHANGED)
        second = ThreadEvent(type=ThreadEventType.TREE_CHANGED)
        assert second.id > first.id

    def test_serialises_type_as_string(self) -> None:
        event = ThreadEvent(type=ThreadEventType.REFRESH_FAILED)
        assert event.model_dump(mode="json")["type"] == "refresh_failed"


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


def _event(kind: ThreadEventType = ThreadEventType.TREE_CHANGED, **data: object) -> ThreadEvent:
    return ThreadEvent(type=kind, thread_id="drive-1", data=data)


class TestEventBusPublish:
    @pytest.mark.asyncio
    async def test_subscriber_receives_event(self) -> None:
        bus = EventBus()
        queue = bus.subscribe()
        event = _event(reason="refetched")

        await bus.publish(event)

        assert queue.get_nowait() is event

    @pytest.mark.asyncio
    async def test_every_subscriber_receives_event(self) -> None:
        bus = EventBus()
        queues = [bus.subscribe() for _ in range(3)]
        event = _event()

        bus.publish_nowait(event)

        for queue in queues:
            assert queue.get_nowait() is event

    @pytest.mark.asyncio
    async def test_unsubscribed_queue_stops_receiving(self) -> None:
        bus = EventBus()
        queue = bus.subscribe()
        bus.unsubscribe(queue)

        bus.publish_nowait(_event())

        assert queue.empty()

    def test_unsubscribe_unknown_queue_is_harmless(self) -> None:
        bus = EventBus()
        bus.unsubscribe(asyncio.Queue())

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self) -> None:
        bus = EventBus()
        queue = bus.subscribe(max_queue=2)
        events = [_event(n=i) for i in range(3)]

        for event in events:
            bus.publish_nowait(event)

        assert [queue.get_nowait().data["n"] for _ in range(2)] == [1, 2]

    @pytest.mark.asyncio
    async def test_subscription_context_manager(self) -> None:
        bus = EventBus()
        async with bus.subscription() as queue:
            bus.publish_nowait(_event())
            assert queue.qsize() == 1
        bus.publish_nowait(_event())
        assert queue.qsize() == 1


class TestEventBusHistory:
    def test_history_records_in_order(self) -> None:
        bus = EventBus()
        events = [_event(n=i) for i in range(3)]
        for event in events:
            bus.publish_nowait(event)
        assert bus.get_history() == events

    def test_history_is_bounded(self) -> None:
        bus = EventBus(max_history=2)
        for i in range(5):
            bus.publish_nowait(_event(n=i))
        assert [e.data["n"] for e in bus.get_history()] == [3, 4]

    def test_history_is_a_copy(self) -> None:
        bus = EventBus()
        bus.publish_nowait(_event())
        bus.get_history().clear()
        assert len(bus.get_history()) == 1

    @pytest.mark.asyncio
    async def test_clear_drops_history_and_subscribers(self) -> None:
        bus = EventBus()
        queue = bus.subscribe()
        bus.publish_nowait(_event())
        bus.clear()

        bus.publish_nowait(_event())

        assert len(bus.get_history()) == 1
        assert queue.qsize() == 1


class TestEventBusFilters:
    """Several thread views can share one bus."""

    @pytest.mark.asyncio
    async def test_subscriber_scoped_to_thread(self) -> None:
        bus = EventBus()
        queue = bus.subscribe(thread_id="drive-1")

        bus.publish_nowait(ThreadEvent(type=ThreadEventType.TREE_CHANGED, thread_id="drive-2"))
        bus.publish_nowait(_event())

        assert queue.qsize() == 1
        assert queue.get_nowait().thread_id == "drive-1"

    @pytest.mark.asyncio
    async def test_subscriber_scoped_to_types(self) -> None:
        bus = EventBus()
        async with bus.subscription(types=[ThreadEventType.COMMIT_STATE_CHANGED]) as queue:
            bus.publish_nowait(_event(ThreadEventType.TREE_CHANGED))
            bus.publish_nowait(_event(ThreadEventType.COMMIT_STATE_CHANGED))

            assert queue.qsize() == 1
            assert queue.get_nowait().type == ThreadEventType.COMMIT_STATE_CHANGED

    def test_history_filters(self) -> None:
        bus = EventBus()
        bus.publish_nowait(_event(ThreadEventType.TREE_CHANGED))
        bus.publish_nowait(_event(ThreadEventType.FOCUS_CHANGED))
        bus.publish_nowait(ThreadEvent(type=ThreadEventType.FOCUS_CHANGED, thread_id="other"))

        assert len(bus.get_history(thread_id="drive-1")) == 2
        assert len(bus.get_history(types=[ThreadEventType.FOCUS_CHANGED])) == 2
        assert (
            len(bus.get_history(thread_id="other", types=[ThreadEventType.TREE_CHANGED]))
            == 0
        )

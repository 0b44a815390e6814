import asyncio
import logging

import pytest

from arch_drift.realtime.events import EventBus, PathErrorEvent, PathStateEvent


def test_publish_reaches_every_subscriber() -> None:
    bus = EventBus()
    first, second = [], []
    bus.subscribe(first.append)
    bus.subscribe(second.append)

    delivered = bus.publish(PathErrorEvent(path="a.py", error="gone"))

    assert delivered == 2
    assert first == second
    assert first[0].path == "a.py"


def test_failing_subscriber_does_not_block_others(caplog) -> None:
    bus = EventBus()
    received = []

    def broken(event) -> None:
        raise RuntimeError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    with caplog.at_level(logging.ERROR, logger="arch_drift.realtime.events"):
        delivered = bus.publish(PathErrorEvent(path="a.py", error="gone"))

    assert delivered == 1
    assert len(received) == 1
    assert "failed handling PathErrorEvent" in caplog.text


def test_event_type_filter() -> None:
    bus = EventBus()
    errors = []
    bus.subscribe(errors.append, event_types=(PathErrorEvent,))

    bus.publish(PathStateEvent(path="a.py", previous="idle", current="pending"))
    bus.publish(PathErrorEvent(path="a.py", error="gone"))

    assert [type(e) for e in errors] == [PathErrorEvent]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    received = []
    subscription = bus.subscribe(received.append)

    assert bus.unsubscribe(subscription) is True
    assert bus.unsubscribe(subscription) is False
    bus.publish(PathErrorEvent(path="a.py", error="gone"))

    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_queue_subscription() -> None:
    """Queue subscribers receive events on their own loop, dropping when full."""
    bus = EventBus()
    _, queue = bus.subscribe_queue(maxsize=1)

    bus.publish(PathErrorEvent(path="a.py", error="first"))
    bus.publish(PathErrorEvent(path="a.py", error="second"))

    event = await asyncio.wait_for(queue.get(), timeout=1.0)
    assert event.error == "first"
    assert queue.empty()

"""
Unit tests for infrastructure/event_bus.py - EventBus
"""
import logging

from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus, reset_event_bus


def make_event(event_type=EventType.NODE_INSERTED, **payload):
    return GraphEvent(type=event_type, payload=payload, timestamp=0.0, source="test")


def test_subscribe_and_publish():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.NODE_INSERTED, received.append)

    event = make_event(node_id=1)
    bus.publish(event)
    bus.publish(make_event(EventType.NODE_REMOVED, node_id=1))

    assert received == [event]


def test_subscribe_is_idempotent():
    bus = EventBus()
    handler = lambda e: None

    bus.subscribe(EventType.EDGE_ADDED, handler)
    bus.subscribe(EventType.EDGE_ADDED, handler)

    assert bus.subscriber_count(EventType.EDGE_ADDED) == 1


def test_subscribe_all():
    bus = EventBus()
    received = []
    bus.subscribe_all(received.append)

    for event_type in EventType:
        bus.publish(make_event(event_type))

    assert len(received) == len(EventType)
    assert bus.subscriber_count() == len(EventType)


def test_handler_errors_do_not_propagate(caplog):
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("handler failed")

    bus.subscribe(EventType.NODE_MOVED, broken)
    bus.subscribe(EventType.NODE_MOVED, received.append)

    with caplog.at_level(logging.ERROR, logger="arbor.event_bus"):
        bus.publish(make_event(EventType.NODE_MOVED))

    assert len(received) == 1
    assert "handler failed" in caplog.text


def test_emit_stamps_event():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.EDGE_REMOVED, received.append)

    bus.emit(EventType.EDGE_REMOVED, {"depart": "A", "arrive": "B"}, "reachability")

    assert received[0].source == "reachability"
    assert received[0].payload == {"depart": "A", "arrive": "B"}
    assert received[0].timestamp > 0


def test_unsubscribe_and_clear():
    bus = EventBus()
    handler = lambda e: None
    bus.subscribe(EventType.NODE_INSERTED, handler)
    bus.subscribe(EventType.NODE_REMOVED, handler)

    bus.unsubscribe(EventType.NODE_INSERTED, handler)
    assert bus.subscriber_count(EventType.NODE_INSERTED) == 0

    bus.clear_subscribers()
    assert bus.subscriber_count() == 0


def test_global_bus_singleton():
    assert get_event_bus() is get_event_bus()

    first = get_event_bus()
    reset_event_bus()

    assert get_event_bus() is not first

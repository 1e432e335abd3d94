"""
Lightweight event bus for decoupled hierarchy change notifications.

Follows the publisher-subscriber pattern so stores can announce mutations
without knowing who listens (mutation logger, a renderer, tests).

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Handlers run synchronously in the publishing thread
- Handler failures are logged, never propagated into the store
- Singleton for global access, injectable for isolation
- Type-safe events via msgspec

Architecture:
    TreeStore / GraphReachability -> EventBus -> [MutationLogger, ...]

Usage:
    from infrastructure.event_bus import get_event_bus, EventType

    bus = get_event_bus()

    def on_moved(event):
        print(event.payload["node_id"], "moved")

    bus.subscribe(EventType.NODE_MOVED, on_moved)
"""
from typing import Callable, List, Dict, Any, Optional
from enum import Enum
from collections import defaultdict
import threading
import time
import logging

import msgspec


logger = logging.getLogger("arbor.event_bus")


class EventType(str, Enum):
    """Types of events published by the tree and graph layers."""
    NODE_INSERTED = "node_inserted"
    NODE_MOVED = "node_moved"
    NODE_REMOVED = "node_removed"
    TREE_LOADED = "tree_loaded"
    GRAPH_NODE_ADDED = "graph_node_added"
    GRAPH_NODE_REMOVED = "graph_node_removed"
    EDGE_ADDED = "edge_added"
    EDGE_REMOVED = "edge_removed"
    REACHABILITY_REBUILT = "reachability_rebuilt"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when a store changes.

    Attributes:
        type: Type of event (NODE_INSERTED, EDGE_ADDED, etc.)
        payload: Event-specific data (node_id, parent_id, etc.)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("tree_store", "reachability")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


Handler = Callable[[GraphEvent], None]


class EventBus:
    """
    Event bus for hierarchy change notifications.

    Thread Safety:
        Subscription changes and publishing may happen from different
        threads (background rebuilds publish from a worker). The subscriber
        list is copied under a lock before handlers run.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """
        Subscribe to events with a synchronous handler.

        Args:
            event_type: Type of event to listen for
            handler: Callable that takes GraphEvent as argument
        """
        with self._lock:
            if handler not in self._subscribers[event_type]:
                self._subscribers[event_type].append(handler)
        logger.debug(f"Subscribed handler to {event_type.value}")

    def subscribe_all(self, handler: Handler) -> None:
        """Subscribe one handler to every event type."""
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def publish(self, event: GraphEvent) -> None:
        """
        Publish an event to all subscribers.

        Exceptions in handlers are logged but don't propagate.
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        with self._lock:
            handlers = list(self._subscribers[event.type])

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in handler for {event.type.value}: {e}",
                    exc_info=True
                )

    def emit(self, event_type: EventType, payload: Dict[str, Any], source: str) -> None:
        """Build a GraphEvent stamped with the current time and publish it."""
        self.publish(GraphEvent(
            type=event_type,
            payload=payload,
            timestamp=time.time(),
            source=source,
        ))

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        """
        Unsubscribe from events.

        Args:
            event_type: Type of event to unsubscribe from
            handler: Handler to remove (must be same instance)
        """
        with self._lock:
            if handler in self._subscribers[event_type]:
                self._subscribers[event_type].remove(handler)
                logger.debug(f"Unsubscribed handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing. Use with caution in production.
        """
        with self._lock:
            if event_type is None:
                self._subscribers.clear()
                logger.info("Cleared all event subscribers")
            else:
                self._subscribers[event_type].clear()
                logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """
        Get count of subscribers for an event type.

        Args:
            event_type: Event type to count (None = all types)
        """
        with self._lock:
            if event_type is None:
                return sum(len(handlers) for handlers in self._subscribers.values())
            return len(self._subscribers[event_type])


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = EventBus()
            logger.info("Initialized global event bus")
        return _event_bus


def reset_event_bus() -> None:
    """Drop the global instance so the next get_event_bus() starts fresh."""
    global _event_bus
    with _event_bus_lock:
        _event_bus = None

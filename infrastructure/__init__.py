"""
ARBOR INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: TOML-backed engine configuration
- event_bus: Publish/subscribe of mutation events
- logger: Mutation audit trail (ring buffer + JSONL files)
- rwlock: Shared/exclusive lock used by the stores
"""

from infrastructure.config import ArborConfig, load_config, configure_logging
from infrastructure.event_bus import (
    EventBus,
    EventType,
    GraphEvent,
    get_event_bus,
    reset_event_bus,
)
from infrastructure.logger import MutationLogger, MutationEvent, LoggerConfig
from infrastructure.rwlock import ReadWriteLock

__all__ = [
    "ArborConfig",
    "load_config",
    "configure_logging",
    "EventBus",
    "EventType",
    "GraphEvent",
    "get_event_bus",
    "reset_event_bus",
    "MutationLogger",
    "MutationEvent",
    "LoggerConfig",
    "ReadWriteLock",
]

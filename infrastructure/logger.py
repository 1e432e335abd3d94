"""
ARBOR MUTATION LOGGER - The Audit Trail

Records every structural mutation published on the event bus so that the
history of a tree or graph can be replayed and inspected.

Architecture:
- MutationLogger: Core logging interface, attaches to an EventBus
- EventBuffer: In-memory ring buffer for recent events
- FileLogger: Optional newline-delimited JSON log, one file per day

Usage:
    bus = get_event_bus()
    mutation_log = MutationLogger()
    mutation_log.attach(bus)

    store.insert(2, 1)
    mutation_log.get_events_for_node(2)   # [MutationEvent(NODE_INSERTED ...)]

Stores built from a config with [logging] mutation_log = true attach a
file-backed logger to their bus themselves (see get_mutation_logger).
"""
import msgspec
from typing import Optional, Dict, List, Any, Union
from datetime import datetime, timezone
from dataclasses import dataclass
from pathlib import Path
from collections import deque
import threading
import weakref
import io
import logging

from infrastructure.event_bus import EventBus, EventType, GraphEvent

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class LoggerConfig:
    """Configuration for the mutation logger."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Directory for log files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")
        self.log_path = Path(self.log_path)


# =============================================================================
# EVENT RECORD
# =============================================================================

class MutationEvent(msgspec.Struct, kw_only=True):
    """One recorded mutation, flattened for querying and JSONL output."""
    timestamp: str
    sequence: int
    mutation_type: str                  # EventType value
    source: str
    node_id: Optional[Union[int, str]] = None
    parent_id: Optional[Union[int, str]] = None
    old_parent_id: Optional[Union[int, str]] = None
    depart: Optional[Union[int, str]] = None
    arrive: Optional[Union[int, str]] = None
    detail: Dict[str, Any] = msgspec.field(default_factory=dict)

    def involves(self, node_id: Union[int, str]) -> bool:
        """True if the event mentions node_id in any id field."""
        return node_id in (self.node_id, self.parent_id, self.old_parent_id, self.depart, self.arrive)


_ID_FIELDS = ("node_id", "parent_id", "old_parent_id", "depart", "arrive")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent mutation events.

    Provides O(1) append and O(n) query for filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: MutationEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[MutationEvent]:
        """Get all events since an ISO8601 timestamp."""
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[MutationEvent]:
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if n > 0 else []

    def get_by_node(self, node_id: Union[int, str]) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.involves(node_id)]

    def get_by_type(self, mutation_type: str) -> List[MutationEvent]:
        with self._lock:
            return [e for e in self._buffer if e.mutation_type == mutation_type]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE LOGGER
# =============================================================================

class FileLogger:
    """
    File-based event logger.

    Writes events as newline-delimited JSON. Rotates logs daily.
    """

    def __init__(self, log_path: Path):
        self._log_path = Path(log_path)
        self._current_file: Optional[io.TextIOWrapper] = None
        self._current_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        self._log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: MutationEvent) -> None:
        """Write an event to the log file."""
        with self._lock:
            self._ensure_file()
            try:
                line = self._encoder.encode(event).decode("utf-8") + "\n"
                self._current_file.write(line)
                self._current_file.flush()
            except (OSError, TypeError) as e:
                logger.warning(f"FileLogger could not write event {event.sequence}: {e}")

    def _ensure_file(self) -> None:
        """Ensure we have a valid file handle for today."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if self._current_date != today:
            if self._current_file:
                self._current_file.close()

            filepath = self._log_path / f"mutations_{today}.jsonl"
            self._current_file = open(filepath, "a", encoding="utf-8")
            self._current_date = today

    def close(self) -> None:
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[MutationEvent]:
        """Read events from a specific date's log (YYYY-MM-DD)."""
        filepath = self._log_path / f"mutations_{date}.jsonl"

        if not filepath.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=MutationEvent)

        with open(filepath, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line.encode()))
                except msgspec.DecodeError as e:
                    logger.warning(f"Skipping malformed line {line_no} in {filepath}: {e}")

        return events


# =============================================================================
# MUTATION LOGGER (Main Interface)
# =============================================================================

class MutationLogger:
    """
    Main logging interface for hierarchy mutations.

    Provides a unified API for logging events to:
    - In-memory buffer (always)
    - File-based logs (configurable)

    Thread-safe for concurrent logging.
    """

    def __init__(self, config: Optional[LoggerConfig] = None):
        self.config = config or LoggerConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_logger: Optional[FileLogger] = None

        if self.config.enable_file_log and self.config.log_path:
            self._file_logger = FileLogger(self.config.log_path)

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # =========================================================================
    # RECORDING
    # =========================================================================

    def record(self, event: GraphEvent) -> MutationEvent:
        """
        Convert a published GraphEvent into a MutationEvent and store it.

        Known id fields are lifted out of the payload; everything else
        lands in `detail`.
        """
        payload = dict(event.payload)
        ids = {name: payload.pop(name) for name in _ID_FIELDS if name in payload}

        mutation = MutationEvent(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            mutation_type=event.type.value,
            source=event.source,
            detail=payload,
            **ids,
        )

        self._buffer.append(mutation)
        if self._file_logger:
            self._file_logger.write(mutation)
        return mutation

    def attach(self, bus: EventBus) -> None:
        """Record every event published on `bus`."""
        bus.subscribe_all(self.record)

    def detach(self, bus: EventBus) -> None:
        for event_type in EventType:
            bus.unsubscribe(event_type, self.record)

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[MutationEvent]:
        """Get the n most recent events."""
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[MutationEvent]:
        return self._buffer.get_since(timestamp)

    def get_events_for_node(self, node_id: Union[int, str]) -> List[MutationEvent]:
        """Get all events that mention a node."""
        return self._buffer.get_by_node(node_id)

    def get_events_by_type(self, mutation_type: Union[EventType, str]) -> List[MutationEvent]:
        if isinstance(mutation_type, EventType):
            mutation_type = mutation_type.value
        return self._buffer.get_by_type(mutation_type)

    def read_log(self, date: str) -> List[MutationEvent]:
        """Read a day's JSONL log; empty when file logging is off."""
        if self._file_logger is None:
            return []
        return self._file_logger.read_log(date)

    def __len__(self) -> int:
        return len(self._buffer)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        if self._file_logger:
            self._file_logger.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# PER-BUS INSTANCES
# =============================================================================

_bus_loggers: "weakref.WeakKeyDictionary[EventBus, MutationLogger]" = weakref.WeakKeyDictionary()
_bus_loggers_lock = threading.Lock()


def get_mutation_logger(bus: EventBus, config: Optional[LoggerConfig] = None) -> MutationLogger:
    """
    Get the MutationLogger recording `bus`, creating and attaching one on
    first use.

    Stores that share a bus share its log, so no event is recorded twice.
    `config` only applies when the logger is created.
    """
    with _bus_loggers_lock:
        mutation_log = _bus_loggers.get(bus)
        if mutation_log is None:
            mutation_log = MutationLogger(config)
            mutation_log.attach(bus)
            _bus_loggers[bus] = mutation_log
            logger.info(f"Mutation log attached (file log: {mutation_log.config.enable_file_log})")
        return mutation_log

"""
Event system for rolodex.

The session engine records what it does as structured events instead of
writing to a process-wide logger. Callers inject an EventEmitter and pick
the sinks:

- EventCollector: in-memory, for tests
- JSONL file: one JSON object per line
- logging.Logger: one formatted line per event

Event types:
- CONNECT: connection attempt initiated/established, host key warnings
- PROBE: reachability probe outcome
- CREDENTIAL: credential source outcome and chain assembly
- AUTH: handshake outcome
- SHELL: PTY and shell lifecycle
- DISCONNECT: connection closed
- ERROR: any failure
"""
from __future__ import annotations

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import IO, Any, Iterator


class EventType(str, Enum):
    """Event types for structured logging."""
    CONNECT = "CONNECT"
    PROBE = "PROBE"
    CREDENTIAL = "CREDENTIAL"
    AUTH = "AUTH"
    SHELL = "SHELL"
    DISCONNECT = "DISCONNECT"
    ERROR = "ERROR"


@dataclass
class Event:
    """
    A single structured event.

    - event_type: The category of event
    - timestamp: When the event occurred (Unix ms)
    - data: Event-specific structured data
    """
    event_type: str
    timestamp: float = field(default_factory=lambda: time.time() * 1000)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        valid_types = {e.value for e in EventType}
        assert self.event_type in valid_types, \
            f"Invalid event_type '{self.event_type}'. Must be one of: {valid_types}"
        assert self.timestamp > 0, \
            f"Timestamp must be positive, got {self.timestamp}"

    def to_json(self) -> str:
        """Serialise event to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_line(self) -> str:
        """Render as a single human-readable log line."""
        details = " ".join(
            f"{key}={value}" for key, value in self.data.items()
        )
        return f"{self.event_type} {details}".rstrip()

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        """Deserialise event from JSON string."""
        data = json.loads(json_str)
        return cls(
            event_type=data["event_type"],
            timestamp=data["timestamp"],
            data=data.get("data", {}),
        )


class EventCollector:
    """Collects events in memory for testing and inspection."""

    def __init__(self) -> None:
        self._events: list[Event] = []

    def emit(self, event: Event) -> None:
        assert isinstance(event, Event), f"Expected Event, got {type(event)}"
        self._events.append(event)

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()

    def get_by_type(self, event_type: str | EventType) -> list[Event]:
        """Get all events of a specific type."""
        if isinstance(event_type, EventType):
            event_type = event_type.value
        return [e for e in self._events if e.event_type == event_type]


class JSONLEventWriter:
    """Appends events to a JSONL file."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._file: IO[str] | None = None

    def open(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, "a", encoding="utf-8")

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def emit(self, event: Event) -> None:
        assert self._file is not None, "Writer not opened. Call open() first."
        self._file.write(event.to_json() + "\n")
        self._file.flush()

    def __enter__(self) -> "JSONLEventWriter":
        self.open()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()


# ERROR events are logged at ERROR level, everything else at INFO
_LOG_LEVELS = {EventType.ERROR.value: logging.ERROR}


class EventEmitter:
    """
    Composite event emitter that dispatches to the configured sinks.

    An emitter with no sinks is valid and discards everything, which is
    what library callers get when they pass emitter=None.
    """

    def __init__(
        self,
        collector: EventCollector | None = None,
        jsonl_path: Path | str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._collector = collector
        self._logger = logger
        self._jsonl_writer: JSONLEventWriter | None = None

        if jsonl_path:
            self._jsonl_writer = JSONLEventWriter(jsonl_path)
            self._jsonl_writer.open()

    def emit(self, event_type: str | EventType, **data: Any) -> Event:
        """
        Create and emit an event.

        Args:
            event_type: The type of event
            **data: Event-specific data (must not contain secrets)

        Returns:
            The created event
        """
        if isinstance(event_type, EventType):
            event_type = event_type.value

        event = Event(event_type=event_type, data=data)

        if self._collector:
            self._collector.emit(event)

        if self._jsonl_writer:
            self._jsonl_writer.emit(event)

        if self._logger:
            self._logger.log(
                _LOG_LEVELS.get(event_type, logging.INFO), event.to_line()
            )

        return event

    def close(self) -> None:
        if self._jsonl_writer:
            self._jsonl_writer.close()

    @contextmanager
    def timed_event(
        self,
        event_type: str | EventType,
        **initial_data: Any,
    ) -> Iterator[dict[str, Any]]:
        """
        Context manager for timing an operation.

        Emits the event on exit with duration_ms added to data.

        Usage:
            with emitter.timed_event(EventType.PROBE, address=addr) as data:
                data["reachable"] = await check()
        """
        start_ms = time.time() * 1000
        event_data = dict(initial_data)

        try:
            yield event_data
        finally:
            event_data["duration_ms"] = (time.time() * 1000) - start_ms
            self.emit(event_type, **event_data)


def read_jsonl_events(path: Path | str) -> list[Event]:
    """Read all events from a JSONL file."""
    path = Path(path)
    assert path.exists(), f"JSONL file not found: {path}"

    events = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(Event.from_json(line))

    return events

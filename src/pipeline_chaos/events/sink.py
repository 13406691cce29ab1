"""Event sink protocol and implementations for pipeline-chaos.

EventSink provides a unified interface for event emission. Sinks can write to
JSONL files, collect in memory for tests, or both via MultiSink.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pipeline_chaos.events.types import Event

logger = logging.getLogger(__name__)


@runtime_checkable
class EventSink(Protocol):
    """Protocol for event sinks.

    Sinks may be shared by parallel scenario workers, so `emit` must be safe
    to call from several threads.
    """

    def emit(self, event: Event) -> None:
        """Emit an event to this sink."""
        ...

    def close(self) -> None:
        """Flush and release any resources. Safe to call more than once."""
        ...


class MultiSink:
    """Composite sink that broadcasts events to multiple sinks.

    Example:
        sink = MultiSink([JsonlSink("events.jsonl"), ListSink()])
        sink.emit(StageEvent(scenario_id="1.1", state="injecting"))
    """

    def __init__(self, sinks: list[EventSink] | None = None):
        self._sinks: list[EventSink] = list(sinks) if sinks else []

    def add(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def remove(self, sink: EventSink) -> None:
        """Remove a sink. No error if not present."""
        if sink in self._sinks:
            self._sinks.remove(sink)

    def emit(self, event: Event) -> None:
        """Emit to all sinks; one sink failing never blocks the others."""
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.warning("event sink %r failed", sink, exc_info=True)

    def close(self) -> None:
        for sink in self._sinks:
            try:
                sink.close()
            except Exception:
                logger.warning("event sink %r failed to close", sink, exc_info=True)

    def __len__(self) -> int:
        return len(self._sinks)


class NullSink:
    """A sink that discards all events."""

    def emit(self, event: Event) -> None:
        pass

    def close(self) -> None:
        pass


class ListSink:
    """A sink that collects events into a list.

    Useful for testing and inspection.

    Example:
        sink = ListSink()
        runner = ScenarioRunner(..., sink=sink)
        runner.run(scenario)
        assert [e.type for e in sink.events][0] == "scenario_start"
    """

    def __init__(self) -> None:
        self.events: list[Event] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)

    def close(self) -> None:
        pass

    def clear(self) -> None:
        with self._lock:
            self.events.clear()

    def of_type(self, type_: str) -> list[Event]:
        return [e for e in self.events if e.type == type_]

    def __len__(self) -> int:
        return len(self.events)

"""JSONL event sink for pipeline-chaos.

Writes Pydantic event models to JSONL files for persistence and replay.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import IO

from pydantic import TypeAdapter

from pipeline_chaos.events.types import Event


class JsonlSink:
    """Append-only JSONL event sink.

    Each line is a complete JSON object that can be deserialized back to the
    original event type using the discriminated union. Writes are serialized
    by a lock so parallel scenario workers can share one file.

    Example:
        with JsonlSink("test-results/events.jsonl") as sink:
            sink.emit(ScenarioStartEvent(scenario_id="1.1"))
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh: IO[str] = self.path.open("a", encoding="utf-8")
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        line = event.model_dump_json() + "\n"
        with self._lock:
            if self._fh.closed:
                raise ValueError(f"{self.path} is closed")
            self._fh.write(line)
            self._fh.flush()

    def close(self) -> None:
        """Close the file handle. Safe to call multiple times."""
        with self._lock:
            if not self._fh.closed:
                self._fh.close()

    def __enter__(self) -> JsonlSink:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def read_events(path: str | Path) -> list[Event]:
    """Read events from a JSONL file, in file order.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        ValidationError: If any line fails to parse.
    """
    adapter = TypeAdapter(Event)
    events: list[Event] = []

    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                events.append(adapter.validate_json(line))

    return events

"""Event system for pipeline-chaos."""

from pipeline_chaos.events.jsonl import JsonlSink, read_events
from pipeline_chaos.events.sink import EventSink, ListSink, MultiSink, NullSink
from pipeline_chaos.events.types import (
    ArtifactEvent,
    Event,
    PollEvent,
    ScenarioEndEvent,
    ScenarioStartEvent,
    StageEvent,
    VerdictEvent,
)

__all__ = [
    "Event",
    "ScenarioStartEvent",
    "StageEvent",
    "PollEvent",
    "ArtifactEvent",
    "VerdictEvent",
    "ScenarioEndEvent",
    "EventSink",
    "MultiSink",
    "NullSink",
    "ListSink",
    "JsonlSink",
    "read_events",
]

"""Pydantic event models for pipeline-chaos.

All lifecycle events emitted while running scenarios are defined here with a
consistent schema, so events.jsonl can be replayed or consumed by other tools.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """Base class for all events."""

    timestamp: datetime = Field(default_factory=_utc_now)
    run_id: str = ""
    scenario_id: str = ""

    model_config = {"extra": "allow"}


class ScenarioStartEvent(BaseEvent):
    """Emitted when a scenario leaves Pending."""

    type: Literal["scenario_start"] = "scenario_start"
    title: str = ""
    environment: str = ""


class StageEvent(BaseEvent):
    """Emitted on every state-machine transition."""

    type: Literal["stage"] = "stage"
    state: str = ""
    previous: str | None = None


class PollEvent(BaseEvent):
    """Emitted for every convergence poll attempt."""

    type: Literal["poll"] = "poll"
    system: str = ""
    attempt: int = 0
    terminal: bool = False
    elapsed_s: float = 0.0
    error: str | None = None


class ArtifactEvent(BaseEvent):
    """Emitted once per collected artifact slot."""

    type: Literal["artifact"] = "artifact"
    name: str = ""
    status: str = ""
    size: int | None = None
    error: str | None = None


class VerdictEvent(BaseEvent):
    """Emitted after the agent's response has been scored."""

    type: Literal["verdict"] = "verdict"
    verdict: str = ""
    unmatched_required: list[str] = Field(default_factory=list)
    advisory_ratio: float | None = None


class ScenarioEndEvent(BaseEvent):
    """Emitted when a scenario reaches Passed, Failed or Errored."""

    type: Literal["scenario_end"] = "scenario_end"
    state: str = ""
    error_kind: str | None = None
    error: str | None = None
    duration_s: float | None = None
    detail: dict[str, Any] | None = None


# Union of all event types for type checking
Event = Annotated[
    Union[
        ScenarioStartEvent,
        StageEvent,
        PollEvent,
        ArtifactEvent,
        VerdictEvent,
        ScenarioEndEvent,
    ],
    Field(discriminator="type"),
]

"""Tests for events/types.py - event models and the discriminated union."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter

from pipeline_chaos.events.types import (
    ArtifactEvent,
    Event,
    PollEvent,
    ScenarioEndEvent,
    ScenarioStartEvent,
    StageEvent,
    VerdictEvent,
)


class TestEventTypes:
    """Each event carries a literal `type` tag."""

    @pytest.mark.parametrize(
        "cls, tag",
        [
            (ScenarioStartEvent, "scenario_start"),
            (StageEvent, "stage"),
            (PollEvent, "poll"),
            (ArtifactEvent, "artifact"),
            (VerdictEvent, "verdict"),
            (ScenarioEndEvent, "scenario_end"),
        ],
    )
    def test_type_tag(self, cls, tag: str) -> None:
        assert cls().type == tag

    def test_timestamp_is_utc(self) -> None:
        assert StageEvent().timestamp.tzinfo is not None

    def test_extra_fields_allowed(self) -> None:
        event = ScenarioEndEvent(state="passed", attempt_note="second try")
        assert event.model_dump()["attempt_note"] == "second try"


class TestEventUnion:
    """The Event union dispatches on `type`."""

    def test_validates_by_tag(self) -> None:
        adapter = TypeAdapter(Event)
        event = adapter.validate_python({"type": "verdict", "verdict": "fail", "unmatched_required": ["names-step"]})
        assert isinstance(event, VerdictEvent)
        assert event.unmatched_required == ["names-step"]

    def test_json_round_trip(self) -> None:
        adapter = TypeAdapter(Event)
        original = PollEvent(scenario_id="2.2", system="stopped-tasks", attempt=4, elapsed_s=45.0, error="throttled")
        restored = adapter.validate_json(original.model_dump_json())
        assert restored == original

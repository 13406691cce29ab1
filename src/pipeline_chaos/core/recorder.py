"""Event recorder for pipeline-chaos.

Recorder turns lifecycle callbacks from the runner, poller and collector into
typed events on an EventSink, and mirrors the interesting ones to the
`pipeline_chaos` logger.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pipeline_chaos.events.sink import EventSink, NullSink
from pipeline_chaos.events.types import (
    ArtifactEvent,
    PollEvent,
    ScenarioEndEvent,
    ScenarioStartEvent,
    StageEvent,
    VerdictEvent,
)

if TYPE_CHECKING:
    from pipeline_chaos.core.collector import ArtifactSlot
    from pipeline_chaos.scenario.report import RunRecord
    from pipeline_chaos.scenario.validator import ValidationResult
    from pipeline_chaos.types import ScenarioState

logger = logging.getLogger(__name__)


class Recorder:
    """Emits lifecycle events for one scenario run.

    Example:
        recorder = Recorder(JsonlSink("events.jsonl"), run_id="a1b2", scenario_id="1.2")
        recorder.scenario_started("npm dependency failure", "default")
        recorder.stage(ScenarioState.INJECTING, ScenarioState.PENDING)
    """

    def __init__(self, sink: EventSink | None = None, run_id: str = "", scenario_id: str = ""):
        self._sink: EventSink = sink if sink is not None else NullSink()
        self.run_id = run_id
        self.scenario_id = scenario_id

    @property
    def sink(self) -> EventSink:
        return self._sink

    def _ids(self) -> dict[str, Any]:
        return {"run_id": self.run_id, "scenario_id": self.scenario_id}

    def scenario_started(self, title: str, environment: str) -> None:
        self._sink.emit(ScenarioStartEvent(title=title, environment=environment, **self._ids()))

    def stage(self, state: ScenarioState, previous: ScenarioState | None) -> None:
        logger.debug("[%s] %s -> %s", self.scenario_id, previous.value if previous else "-", state.value)
        self._sink.emit(
            StageEvent(
                state=state.value,
                previous=previous.value if previous else None,
                **self._ids(),
            )
        )

    def poll(
        self,
        system: str,
        attempt: int,
        terminal: bool,
        elapsed_s: float,
        error: str | None = None,
    ) -> None:
        logger.debug(
            "[%s] poll %s #%d terminal=%s elapsed=%.1fs%s",
            self.scenario_id,
            system,
            attempt,
            terminal,
            elapsed_s,
            f" error={error}" if error else "",
        )
        self._sink.emit(
            PollEvent(
                system=system,
                attempt=attempt,
                terminal=terminal,
                elapsed_s=elapsed_s,
                error=error,
                **self._ids(),
            )
        )

    def artifact(self, slot: ArtifactSlot) -> None:
        if slot.error:
            logger.warning("[%s] artifact %s unavailable: %s", self.scenario_id, slot.name, slot.error)
        self._sink.emit(
            ArtifactEvent(
                name=slot.name,
                status=slot.status.value,
                size=slot.size,
                error=slot.error,
                **self._ids(),
            )
        )

    def verdict(self, result: ValidationResult) -> None:
        self._sink.emit(
            VerdictEvent(
                verdict=result.verdict.value,
                unmatched_required=[r.name for r in result.unmatched_required],
                advisory_ratio=result.advisory_ratio,
                **self._ids(),
            )
        )

    def scenario_finished(self, record: RunRecord) -> None:
        self._sink.emit(
            ScenarioEndEvent(
                state=record.state.value,
                error_kind=record.error_kind.value if record.error_kind else None,
                error=record.error,
                duration_s=record.duration_s,
                **self._ids(),
            )
        )

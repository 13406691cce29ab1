"""Run records: the persisted outcome of one scenario execution."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic_core import to_jsonable_python

from pipeline_chaos.core.collector import ArtifactBundle
from pipeline_chaos.scenario.contract import RuleResult
from pipeline_chaos.types import ErrorKind, ScenarioState, Verdict


class ConvergenceOutcome(BaseModel):
    """What one convergence wait observed."""

    model_config = ConfigDict(frozen=True)

    name: str
    system: str
    terminal: bool
    elapsed_s: float
    attempts: int
    observed_at: datetime | None = None
    last_result: Any = None


class StageTimestamps(BaseModel):
    """Wall-clock stamps for each stage boundary that was reached."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    trigger_time: datetime | None = None
    convergence_times: list[datetime] = Field(default_factory=list)
    collection_time: datetime | None = None
    validation_time: datetime | None = None
    finished_at: datetime | None = None

    @property
    def convergence_time(self) -> datetime | None:
        """When the last system reached its terminal state."""
        return self.convergence_times[-1] if self.convergence_times else None

    def ordered(self) -> list[datetime]:
        stamps = [self.started_at, self.trigger_time, *self.convergence_times]
        stamps += [self.collection_time, self.validation_time, self.finished_at]
        return [s for s in stamps if s is not None]

    def is_monotonic(self) -> bool:
        stamps = self.ordered()
        return all(a <= b for a, b in zip(stamps, stamps[1:]))


class RunRecord(BaseModel):
    """Outcome of one (scenario, execution) pair. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    scenario_id: str
    title: str = ""
    environment: str = ""
    state: ScenarioState
    verdict: Verdict | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    revision: str | None = None
    convergence: list[ConvergenceOutcome] = Field(default_factory=list)
    bundle: ArtifactBundle | None = None
    query: str | None = None
    response: str | None = None
    rule_results: list[RuleResult] = Field(default_factory=list)
    advisory_ratio: float | None = None
    timestamps: StageTimestamps
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.state == ScenarioState.PASSED

    @property
    def duration_s(self) -> float | None:
        if self.timestamps.finished_at is None:
            return None
        return (self.timestamps.finished_at - self.timestamps.started_at).total_seconds()

    @property
    def propagation_latency_s(self) -> list[float]:
        """Seconds from trigger to each observed terminal state."""
        trigger = self.timestamps.trigger_time
        if trigger is None:
            return []
        return [(t - trigger).total_seconds() for t in self.timestamps.convergence_times]

    @property
    def unmatched_required(self) -> list[RuleResult]:
        return [r for r in self.rule_results if r.required and not r.matched]

    def to_json(self) -> str:
        """Serialize for storage; values without a JSON form (probe or source
        objects) are written as their `str()`."""
        return json.dumps(to_jsonable_python(self, fallback=str), indent=2)

    def summary(self) -> dict[str, Any]:
        """Small, flat view for index files and CLI output."""
        return {
            "run_id": self.run_id,
            "scenario_id": self.scenario_id,
            "title": self.title,
            "state": self.state.value,
            "verdict": self.verdict.value if self.verdict else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "revision": self.revision,
            "started_at": self.timestamps.started_at.isoformat(),
            "duration_s": self.duration_s,
            "unmatched_required": [r.name for r in self.unmatched_required],
            "advisory_ratio": self.advisory_ratio,
        }

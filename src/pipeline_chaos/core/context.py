"""Per-run context shared by probes and artifact sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pipeline_chaos.core.clock import CancelToken

if TYPE_CHECKING:
    from pipeline_chaos.config import Environment
    from pipeline_chaos.scenario.model import Scenario


@dataclass
class RunContext:
    """What later stages know about an in-flight scenario.

    Probes read `revision` and `trigger_time` to find the pipeline run and
    logs belonging to this trigger; sources read `observations` (keyed by
    convergence name) to locate the run or task that reached a terminal state.
    """

    run_id: str
    scenario: Scenario
    environment: Environment
    revision: str | None = None
    trigger_time: datetime | None = None
    observations: dict[str, Any] = field(default_factory=dict)
    cancel: CancelToken = field(default_factory=CancelToken)

    @property
    def scenario_id(self) -> str:
        return self.scenario.id

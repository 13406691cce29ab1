"""Scenario runner for pipeline-chaos.

This package provides:
- a declarative Scenario model (mutations, trigger, convergence, artifacts)
- expected-response contracts and the validator that scores agent answers
- the runner state machine that produces RunRecords
"""

from pipeline_chaos.scenario.contract import (
    ExpectedResponseContract,
    RuleResult,
    advisory,
    contains,
    icontains,
    one_of,
    regex,
)
from pipeline_chaos.scenario.model import (
    ArtifactMutation,
    ArtifactSpec,
    ConvergenceSpec,
    FieldIn,
    ManualPrecondition,
    NonEmpty,
    Scenario,
    Trigger,
    function_invoked,
    pipeline_run,
    stopped_tasks,
)
from pipeline_chaos.scenario.report import RunRecord
from pipeline_chaos.scenario.runner import ScenarioRunner
from pipeline_chaos.scenario.validator import ResponseValidator, ValidationResult

__all__ = [
    "Scenario",
    "ArtifactMutation",
    "ArtifactSpec",
    "ConvergenceSpec",
    "ManualPrecondition",
    "Trigger",
    "FieldIn",
    "NonEmpty",
    "pipeline_run",
    "stopped_tasks",
    "function_invoked",
    "ExpectedResponseContract",
    "RuleResult",
    "contains",
    "icontains",
    "regex",
    "one_of",
    "advisory",
    "ResponseValidator",
    "ValidationResult",
    "RunRecord",
    "ScenarioRunner",
]

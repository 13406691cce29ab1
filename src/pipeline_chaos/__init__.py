from pipeline_chaos.core.clock import CancelToken
from pipeline_chaos.errors import (
    AgentError,
    Cancelled,
    CollectionError,
    ConvergenceTimeout,
    InjectionError,
    PipelineChaosError,
    ValidatorInputError,
)
from pipeline_chaos.scenario.contract import ExpectedResponseContract, contains, icontains, one_of, regex
from pipeline_chaos.scenario.model import ArtifactMutation, ArtifactSpec, ConvergenceSpec, Scenario
from pipeline_chaos.scenario.report import RunRecord
from pipeline_chaos.scenario.runner import ScenarioRunner
from pipeline_chaos.types import ErrorKind, ScenarioState, Verdict

__all__ = [
    "Scenario",
    "ArtifactMutation",
    "ArtifactSpec",
    "ConvergenceSpec",
    "ExpectedResponseContract",
    "contains",
    "icontains",
    "regex",
    "one_of",
    "ScenarioRunner",
    "RunRecord",
    "CancelToken",
    "ScenarioState",
    "Verdict",
    "ErrorKind",
    "PipelineChaosError",
    "InjectionError",
    "ConvergenceTimeout",
    "CollectionError",
    "ValidatorInputError",
    "Cancelled",
    "AgentError",
]

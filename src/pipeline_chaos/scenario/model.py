"""Scenario model.

Every fault scenario has the same shape (mutations, trigger, convergence
specs, artifacts, contract); only the content varies. Scenario files are
Python modules exposing `scenario`/`scenarios` or YAML/JSON data files (see
loader.py).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable

from pipeline_chaos.scenario.contract import ExpectedResponseContract

# Predicate over a poll observation defining "terminal".
TerminalPredicate = Callable[[Any], bool]


def _lookup(observation: Any, key: str) -> Any:
    """Resolve a dotted key against dicts or attributes."""
    value = observation
    for part in key.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _frozen_mapping(value: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value))


@dataclass(frozen=True)
class FieldIn:
    """Terminal when `observation[field]` is one of `values`.

    Example:
        FieldIn("status", ("completed",))  # GitHub Actions run finished
    """

    field: str
    values: tuple[Any, ...]

    def __call__(self, observation: Any) -> bool:
        if observation is None:
            return False
        return _lookup(observation, self.field) in self.values


@dataclass(frozen=True)
class NonEmpty:
    """Terminal as soon as the observation is a non-empty collection/string."""

    def __call__(self, observation: Any) -> bool:
        return bool(observation)


@dataclass(frozen=True)
class ArtifactMutation:
    """One file to write into the target environment."""

    path: str
    content: str
    intent: str = ""


@dataclass(frozen=True)
class Trigger:
    """The action that publishes the mutations.

    `allow_empty` lets a scenario publish with no file changes (e.g. re-running
    a workflow after a secret was changed out of band).
    """

    action: str = "publish"
    message: str | None = None
    branch: str | None = None
    allow_empty: bool = False


@dataclass(frozen=True)
class ConvergenceSpec:
    """What to poll and when to stop.

    Attributes:
        system: Probe name in the environment's capability set
            ("pipeline", "service", "stopped-tasks", "function-invocation").
        terminal: Predicate over the probe result.
        query: Probe-specific parameters (e.g. {"workflow": "build.yml"}).
        interval_s: Fixed polling interval.
        timeout_s: Ceiling on total wait.
        name: Key under which the observation is stored for later stages.
            Defaults to `system`.
    """

    system: str
    terminal: TerminalPredicate
    query: Mapping[str, Any] = field(default_factory=dict, hash=False)
    interval_s: float = 5.0
    timeout_s: float = 300.0
    name: str = ""

    def __post_init__(self) -> None:
        if self.interval_s <= 0:
            raise ValueError("interval_s must be positive")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be positive")
        object.__setattr__(self, "query", _frozen_mapping(self.query))
        if not self.name:
            object.__setattr__(self, "name", self.system)

    def is_terminal(self, observation: Any) -> bool:
        return bool(self.terminal(observation))


@dataclass(frozen=True)
class ArtifactSpec:
    """One artifact to retrieve after convergence."""

    name: str
    source: str
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", _frozen_mapping(self.params))


@dataclass(frozen=True)
class ManualPrecondition:
    """A human step to complete before injection (e.g. delete a secret)."""

    instructions: str
    name: str = "manual-step"


@dataclass(frozen=True)
class Scenario:
    """A single fault scenario.

    Attributes:
        id: Stable identifier, e.g. "1.2".
        title: Human-readable title.
        query: Natural-language question put to the agent under test.
        mutations: Files written atomically before the trigger fires.
        trigger: How the mutations are published.
        convergence: Systems to poll, in order.
        artifacts: Evidence to collect once converged.
        contract: Rules the agent's answer must satisfy.
        environment: Name of the target environment.
        preconditions: Manual steps awaited before injection.
        reminder: Printed after the scenario finishes (cleanup hints).
        attach_artifacts: Append the collected bundle to the agent query.
        tags: Free-form labels for selection and reporting.
        meta: Optional metadata copied into the run record.

    Example:
        scenario = Scenario(
            id="1.2",
            title="npm dependency failure",
            query="npm install is failing in my GitHub Actions workflow",
            mutations=[ArtifactMutation("package.json", PACKAGE_JSON)],
            convergence=[pipeline_run("npm-build.yml")],
            artifacts=[ArtifactSpec("pipeline-log", "pipeline-log")],
            contract=ExpectedResponseContract(rules=(contains("99.99.99"),)),
        )
    """

    id: str
    title: str
    query: str
    mutations: tuple[ArtifactMutation, ...] = ()
    trigger: Trigger = field(default_factory=Trigger)
    convergence: tuple[ConvergenceSpec, ...] = ()
    artifacts: tuple[ArtifactSpec, ...] = ()
    contract: ExpectedResponseContract = field(default_factory=ExpectedResponseContract)
    environment: str = "default"
    preconditions: tuple[ManualPrecondition, ...] = ()
    description: str = ""
    reminder: str | None = None
    attach_artifacts: bool = False
    tags: tuple[str, ...] = ()
    meta: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("scenario id must be non-empty")
        if not self.query.strip():
            raise ValueError(f"scenario {self.id}: query must be non-empty")
        for name in ("mutations", "convergence", "artifacts", "preconditions", "tags"):
            object.__setattr__(self, name, tuple(getattr(self, name)))
        if isinstance(self.contract, (list, tuple)):
            object.__setattr__(self, "contract", ExpectedResponseContract(rules=tuple(self.contract)))
        object.__setattr__(self, "meta", _frozen_mapping(self.meta))

        paths = [m.path for m in self.mutations]
        if len(paths) != len(set(paths)):
            raise ValueError(f"scenario {self.id}: duplicate mutation paths")
        names = [a.name for a in self.artifacts]
        if len(names) != len(set(names)):
            raise ValueError(f"scenario {self.id}: duplicate artifact names")
        keys = [c.name for c in self.convergence]
        if len(keys) != len(set(keys)):
            raise ValueError(f"scenario {self.id}: duplicate convergence names")
        if not self.mutations and not self.trigger.allow_empty:
            raise ValueError(
                f"scenario {self.id}: no mutations; set Trigger(allow_empty=True) to publish anyway"
            )

    @property
    def commit_message(self) -> str:
        return self.trigger.message or f"TEST {self.id}: {self.title}"

    def variant(self, **overrides: Any) -> Scenario:
        """Copy this scenario with some fields replaced."""
        return replace(self, **overrides)


# ---------------------------------------------------------------------------
# Convergence helpers shared by the catalog and data-file loader
# ---------------------------------------------------------------------------


def pipeline_run(workflow: str, *, interval_s: float = 5.0, timeout_s: float = 600.0) -> ConvergenceSpec:
    """Latest run of `workflow` for the trigger revision has completed."""
    return ConvergenceSpec(
        system="pipeline",
        terminal=FieldIn("status", ("completed",)),
        query={"workflow": workflow},
        interval_s=interval_s,
        timeout_s=timeout_s,
    )


def stopped_tasks(*, interval_s: float = 15.0, timeout_s: float = 900.0) -> ConvergenceSpec:
    """At least one deployment task stopped after the trigger."""
    return ConvergenceSpec(
        system="stopped-tasks",
        terminal=NonEmpty(),
        interval_s=interval_s,
        timeout_s=timeout_s,
    )


def function_invoked(*, interval_s: float = 10.0, timeout_s: float = 300.0) -> ConvergenceSpec:
    """A function invocation report was logged after the trigger."""
    return ConvergenceSpec(
        system="function-invocation",
        terminal=NonEmpty(),
        interval_s=interval_s,
        timeout_s=timeout_s,
    )

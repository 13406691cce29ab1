"""Shared test fixtures for pipeline-chaos tests."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Callable

import pytest

from pipeline_chaos.backends import Capabilities
from pipeline_chaos.config import Environment
from pipeline_chaos.core.clock import CancelToken, FakeClock
from pipeline_chaos.core.context import RunContext
from pipeline_chaos.errors import InjectionError
from pipeline_chaos.events.sink import ListSink
from pipeline_chaos.scenario.contract import ExpectedResponseContract, contains
from pipeline_chaos.scenario.model import (
    ArtifactMutation,
    ArtifactSpec,
    ConvergenceSpec,
    FieldIn,
    Scenario,
)
from pipeline_chaos.store import ResultStore

# =============================================================================
# Fakes for external systems
# =============================================================================


class FakeWorkspace:
    """In-memory stand-in for a git clone."""

    def __init__(self, root: Path, fail_on: str | None = None):
        self.root = root
        self.fail_on = fail_on
        self.commits: list[tuple[list[str], str, bool]] = []
        self.published: list[str | None] = []
        self.discarded: list[tuple[list[str], str | None]] = []

    def commit(self, paths: list[str], message: str, allow_empty: bool = False) -> str:
        if self.fail_on == "commit":
            raise InjectionError("commit rejected")
        self.commits.append((list(paths), message, allow_empty))
        return hashlib.sha1(f"{len(self.commits)}:{message}".encode()).hexdigest()

    def publish(self, branch: str | None = None) -> None:
        if self.fail_on == "publish":
            raise RuntimeError("remote hung up unexpectedly")
        self.published.append(branch)

    def discard(self, paths: list[str], revision: str | None = None) -> None:
        if revision is not None:
            self.commits.pop()
        self.discarded.append((list(paths), revision))


class FakeProbe:
    """Returns scripted observations; exceptions in the script are raised."""

    def __init__(self, *observations: Any):
        self.observations = list(observations)
        self.calls = 0

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> Any:
        self.calls += 1
        item = self.observations[min(self.calls, len(self.observations)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


class FakeSource:
    """Returns fixed content, or raises it when it is an exception."""

    def __init__(self, content: Any):
        self.content = content
        self.calls = 0

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> Any:
        self.calls += 1
        if isinstance(self.content, Exception):
            raise self.content
        if callable(self.content):
            return self.content(spec, ctx)
        return self.content


class FakeAgent:
    """Answers every query with `response` (or `response(query)`)."""

    def __init__(self, response: Any = "", raises: Exception | None = None):
        self.response = response
        self.raises = raises
        self.queries: list[tuple[str, str | None]] = []

    def ask(self, query: str, *, context_id: str | None = None) -> Any:
        self.queries.append((query, context_id))
        if self.raises is not None:
            raise self.raises
        if callable(self.response):
            return self.response(query)
        return self.response


NPM_LOG = """\
Run npm install
npm ERR! code ETARGET
npm ERR! notarget No matching version found for express@99.99.99.
Error: Process completed with exit code 1.
"""

GOOD_ANSWER = (
    "The express@99.99.99 version doesn't exist; pin express@^4.18.0 instead "
    "— see the failing Install dependencies step."
)
BAD_ANSWER = "Your tests are failing, please check your code."

COMPLETED_RUN = {"id": 42, "status": "completed", "conclusion": "failure", "head_sha": "abc"}


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock starting at 2024-01-01T00:00:00Z."""
    return FakeClock()


@pytest.fixture
def sink() -> ListSink:
    return ListSink()


@pytest.fixture
def environment(tmp_path: Path) -> Environment:
    repo = tmp_path / "repo"
    repo.mkdir()
    return Environment(name="default", repo_path=repo, github_repo="acme/devops-agent-test")


@pytest.fixture
def workspace(environment: Environment) -> FakeWorkspace:
    return FakeWorkspace(environment.repo_path)


@pytest.fixture
def store(tmp_path: Path) -> ResultStore:
    return ResultStore(tmp_path / "results")


@pytest.fixture
def make_ctx(environment: Environment) -> Callable[..., RunContext]:
    """Factory for a RunContext around a scenario."""

    def _make(scenario: Scenario | None = None, **kwargs: Any) -> RunContext:
        return RunContext(
            run_id=kwargs.pop("run_id", "run-1"),
            scenario=scenario or npm_scenario(),
            environment=environment,
            cancel=kwargs.pop("cancel", CancelToken()),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_caps(environment: Environment, workspace: FakeWorkspace) -> Callable[..., Capabilities]:
    """Factory for a capability set with a completed pipeline and the npm log."""

    def _make(
        probes: dict[str, Any] | None = None,
        sources: dict[str, Any] | None = None,
        ws: Any = None,
    ) -> Capabilities:
        return Capabilities(
            environment=environment,
            workspace=ws or workspace,
            probes=probes if probes is not None else {"pipeline": FakeProbe(None, {"status": "in_progress"}, COMPLETED_RUN)},
            sources=sources if sources is not None else {"pipeline-log": FakeSource(NPM_LOG)},
        )

    return _make


def npm_scenario(**overrides: Any) -> Scenario:
    """A small version of catalog scenario 1.2 with fast polling."""
    fields: dict[str, Any] = dict(
        id="1.2",
        title="npm dependency failure",
        query="npm install is failing in my GitHub Actions workflow",
        mutations=[
            ArtifactMutation("package.json", '{"dependencies": {"express": "99.99.99"}}\n'),
            ArtifactMutation(".github/workflows/npm-build.yml", "name: NPM Build\n"),
        ],
        convergence=[
            ConvergenceSpec(
                system="pipeline",
                terminal=FieldIn("status", ("completed",)),
                query={"workflow": "npm-build.yml"},
                interval_s=5,
                timeout_s=60,
            )
        ],
        artifacts=[ArtifactSpec("pipeline-log", "pipeline-log")],
        contract=ExpectedResponseContract(
            rules=(
                contains("99.99.99"),
                contains("Install dependencies", requires=("pipeline-log",)),
            )
        ),
    )
    fields.update(overrides)
    return Scenario(**fields)


@pytest.fixture
def scenario() -> Scenario:
    return npm_scenario()


@pytest.fixture
def make_scenario() -> Callable[..., Scenario]:
    return npm_scenario

"""Tests for scenario/runner.py - the scenario state machine and suites."""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest
from conftest import (
    BAD_ANSWER,
    GOOD_ANSWER,
    NPM_LOG,
    FakeAgent,
    FakeProbe,
    FakeSource,
    FakeWorkspace,
    npm_scenario,
)

from pipeline_chaos.core.clock import CancelToken, FakeClock
from pipeline_chaos.scenario.model import ArtifactMutation, ManualPrecondition, stopped_tasks
from pipeline_chaos.scenario.runner import ScenarioRunner, compose_query
from pipeline_chaos.types import ErrorKind, ScenarioState, Verdict


@pytest.fixture
def make_runner(make_caps, clock, sink, store):
    def _make(agent: Any = None, caps: Any = None, **kwargs: Any) -> ScenarioRunner:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sink", sink)
        kwargs.setdefault("store", store)
        return ScenarioRunner(
            {"default": caps or make_caps()},
            agent if agent is not None else FakeAgent(GOOD_ANSWER),
            **kwargs,
        )

    return _make


def stages(sink) -> list[str]:
    return [e.state for e in sink.of_type("stage")]


class Decline:
    def confirm(self, scenario, precondition) -> bool:
        return False


class TestHappyPath:
    def test_good_answer_passes(self, make_runner, sink, workspace) -> None:
        record = make_runner().run(npm_scenario())

        assert record.state == ScenarioState.PASSED
        assert record.verdict == Verdict.PASS
        assert record.error_kind is None
        assert stages(sink) == ["injecting", "converging", "collecting", "validating"]
        assert len(workspace.commits) == 1
        assert record.revision is not None
        assert record.convergence[0].terminal
        assert record.convergence[0].attempts == 3
        assert record.bundle is not None and record.bundle.content("pipeline-log") == NPM_LOG

    def test_bad_answer_fails(self, make_runner) -> None:
        record = make_runner(FakeAgent(BAD_ANSWER)).run(npm_scenario())

        assert record.state == ScenarioState.FAILED
        assert record.verdict == Verdict.FAIL
        assert {r.name for r in record.unmatched_required} == {
            "contains:99.99.99",
            "contains:Install dependencies",
        }

    def test_event_stream(self, make_runner, sink) -> None:
        make_runner().run(npm_scenario())
        types = [e.type for e in sink.events]
        assert types[0] == "scenario_start"
        assert types[-1] == "scenario_end"
        assert types.count("poll") == 3
        assert types.count("artifact") == 1
        assert types.count("verdict") == 1
        assert len({e.run_id for e in sink.events}) == 1

    def test_timestamps_monotonic(self, make_runner) -> None:
        record = make_runner().run(npm_scenario())
        stamps = record.timestamps
        assert stamps.is_monotonic()
        assert stamps.trigger_time is not None
        assert stamps.collection_time is not None
        assert stamps.validation_time is not None
        assert record.propagation_latency_s == [10.0]

    def test_mutations_written(self, make_runner, environment) -> None:
        make_runner().run(npm_scenario())
        assert "99.99.99" in (environment.repo_path / "package.json").read_text()
        assert (environment.repo_path / ".github/workflows/npm-build.yml").exists()

    def test_persisted(self, make_runner, store) -> None:
        record = make_runner().run(npm_scenario())
        (stored,) = store.records("1.2")
        assert stored.run_id == record.run_id
        assert stored.state == ScenarioState.PASSED
        assert store.latest()["1.2"]["state"] == "passed"


class TestAgentQuery:
    def test_context_id_is_scenario_id(self, make_runner) -> None:
        agent = FakeAgent(GOOD_ANSWER)
        make_runner(agent).run(npm_scenario())
        ((query, context_id),) = agent.queries
        assert query == npm_scenario().query
        assert context_id == "1.2"

    def test_attach_artifacts(self, make_runner) -> None:
        agent = FakeAgent(GOOD_ANSWER)
        record = make_runner(agent, attach_artifacts=True).run(npm_scenario())
        query = agent.queries[0][0]
        assert query.startswith(npm_scenario().query)
        assert "Collected evidence" in query
        assert "ETARGET" in query
        assert record.query == query

    def test_compose_query_without_bundle(self) -> None:
        scenario = npm_scenario()
        assert compose_query(scenario, None, attach=True) == scenario.query


class TestErrored:
    def test_path_escape(self, make_runner, sink, workspace) -> None:
        scenario = npm_scenario(mutations=[ArtifactMutation("../escape.txt", "x")])
        record = make_runner().run(scenario)

        assert record.state == ScenarioState.ERRORED
        assert record.error_kind == ErrorKind.INJECTION
        assert workspace.commits == []
        assert stages(sink) == ["injecting"]

    def test_publish_failure(self, make_runner, make_caps, environment) -> None:
        caps = make_caps(ws=FakeWorkspace(environment.repo_path, fail_on="publish"))
        record = make_runner(caps=caps).run(npm_scenario())

        assert record.error_kind == ErrorKind.INJECTION
        assert "remote hung up" in record.error

    def test_unknown_environment(self, make_runner) -> None:
        record = make_runner().run(npm_scenario(environment="staging"))
        assert record.error_kind == ErrorKind.INJECTION
        assert "staging" in record.error

    def test_convergence_timeout(self, make_runner, make_caps) -> None:
        caps = make_caps(probes={"pipeline": FakeProbe({"status": "in_progress"})})
        agent = FakeAgent(GOOD_ANSWER)
        record = make_runner(agent, caps=caps).run(npm_scenario())

        assert record.state == ScenarioState.ERRORED
        assert record.error_kind == ErrorKind.CONVERGENCE_TIMEOUT
        (outcome,) = record.convergence
        assert not outcome.terminal
        assert outcome.last_result == {"status": "in_progress"}
        assert agent.queries == []

    def test_timeout_on_second_system_keeps_first(self, make_runner, make_caps) -> None:
        caps = make_caps(
            probes={
                "pipeline": FakeProbe({"status": "completed"}),
                "stopped-tasks": FakeProbe([]),
            }
        )
        scenario = npm_scenario(convergence=[*npm_scenario().convergence, stopped_tasks(timeout_s=60)])
        record = make_runner(caps=caps).run(scenario)

        assert record.error_kind == ErrorKind.CONVERGENCE_TIMEOUT
        assert [(c.name, c.terminal) for c in record.convergence] == [
            ("pipeline", True),
            ("stopped-tasks", False),
        ]

    @pytest.mark.parametrize("content", ["", RuntimeError("503 Service Unavailable")])
    def test_required_evidence_unavailable(self, make_runner, make_caps, content) -> None:
        caps = make_caps(sources={"pipeline-log": FakeSource(content)})
        agent = FakeAgent(GOOD_ANSWER)
        record = make_runner(agent, caps=caps).run(npm_scenario())

        assert record.error_kind == ErrorKind.COLLECTION
        assert record.bundle is not None
        assert "pipeline-log" in record.bundle.unavailable()
        assert agent.queries == []

    def test_empty_response(self, make_runner) -> None:
        record = make_runner(FakeAgent("   ")).run(npm_scenario())
        assert record.error_kind == ErrorKind.VALIDATOR_INPUT
        assert record.verdict is None

    def test_agent_unreachable(self, make_runner) -> None:
        record = make_runner(FakeAgent(raises=TimeoutError("read timeout"))).run(npm_scenario())
        assert record.error_kind == ErrorKind.AGENT
        assert "TimeoutError" in record.error

    def test_precondition_declined(self, make_runner, workspace) -> None:
        scenario = npm_scenario(preconditions=[ManualPrecondition("Delete the secret", name="delete-secret")])
        record = make_runner(confirmer=Decline()).run(scenario)

        assert record.error_kind == ErrorKind.PRECONDITION
        assert "delete-secret" in record.error
        assert workspace.commits == []

    def test_missing_probe_is_internal(self, make_runner, make_caps) -> None:
        record = make_runner(caps=make_caps(probes={})).run(npm_scenario())
        assert record.state == ScenarioState.ERRORED
        assert record.error_kind == ErrorKind.INTERNAL

    def test_errored_record_is_persisted(self, make_runner, store) -> None:
        make_runner(FakeAgent("")).run(npm_scenario())
        assert store.latest()["1.2"]["error_kind"] == "ValidatorInputError"


class TestCancellation:
    def test_cancelled_before_start(self, make_runner, workspace) -> None:
        token = CancelToken()
        token.cancel("operator abort")
        record = make_runner().run(npm_scenario(), token)

        assert record.error_kind == ErrorKind.CANCELLED
        assert record.error == "operator abort"
        assert workspace.commits == []

    def test_cancelled_while_polling(self, make_runner, sink) -> None:
        token = CancelToken()
        clock = FakeClock(on_sleep=lambda t: token.cancel("stop"))
        record = make_runner(clock=clock).run(npm_scenario(), token)

        assert record.error_kind == ErrorKind.CANCELLED
        assert stages(sink) == ["injecting", "converging"]

    def test_keyboard_interrupt_cancels_token(self, make_runner) -> None:
        token = CancelToken()
        record = make_runner(FakeAgent(raises=KeyboardInterrupt())).run(npm_scenario(), token)

        assert record.error_kind == ErrorKind.CANCELLED
        assert token.cancelled


class TestSuites:
    def test_continues_after_error(self, make_runner) -> None:
        broken = npm_scenario(id="1.2a", environment="nowhere")
        records = make_runner().run_all([broken, npm_scenario()])

        assert [r.scenario_id for r in records] == ["1.2a", "1.2"]
        assert [r.state for r in records] == [ScenarioState.ERRORED, ScenarioState.PASSED]

    def test_opaque_observations_are_persisted(self, make_runner, make_caps, store) -> None:
        class Handle:
            def __str__(self) -> str:
                return "<run handle>"

        caps = make_caps(
            probes={
                "pipeline": FakeProbe(
                    {"status": "in_progress", "handle": Handle()},
                    {"status": "completed", "conclusion": "failure", "handle": Handle()},
                )
            },
            sources={"pipeline-log": FakeSource({"lines": [NPM_LOG], "raw": Handle()})},
        )
        records = make_runner(caps=caps).run_all([npm_scenario(), npm_scenario(id="1.2b")])

        assert [r.scenario_id for r in records] == ["1.2", "1.2b"]
        assert all(r.error_kind is None for r in records)
        (stored,) = store.records("1.2")
        assert stored.convergence[0].last_result["handle"] == "<run handle>"
        assert len(store.records("1.2b")) == 1

    def test_callbacks(self, make_runner) -> None:
        started: list[tuple[int, str]] = []
        finished: list[tuple[str, ScenarioState]] = []
        make_runner().run_all(
            [npm_scenario(), npm_scenario(id="1.2b")],
            on_start=lambda i, s: started.append((i, s.id)),
            on_finish=lambda s, r: finished.append((s.id, r.state)),
        )
        assert started == [(1, "1.2"), (2, "1.2b")]
        assert finished == [("1.2", ScenarioState.PASSED), ("1.2b", ScenarioState.PASSED)]

    def test_cancelled_suite_records_every_scenario(self, make_runner) -> None:
        token = CancelToken()
        token.cancel("suite aborted")
        records = make_runner().run_all([npm_scenario(), npm_scenario(id="1.2b")], cancel=token)
        assert [r.error_kind for r in records] == [ErrorKind.CANCELLED, ErrorKind.CANCELLED]

    def test_suite_timeout(self, make_runner) -> None:
        def slow(query: str) -> str:
            time.sleep(0.3)
            return GOOD_ANSWER

        records = make_runner(FakeAgent(slow)).run_all(
            [npm_scenario(), npm_scenario(id="1.2b")],
            suite_timeout_s=0.05,
        )

        assert records[0].state == ScenarioState.PASSED
        assert records[1].error_kind == ErrorKind.CANCELLED
        assert "suite timeout" in records[1].error

    def test_parallel_serializes_per_environment(self, make_runner) -> None:
        guard = threading.Lock()
        active = 0
        peak = 0

        def answer(query: str) -> str:
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1
            return GOOD_ANSWER

        scenarios = [npm_scenario(id=f"1.2.{i}") for i in range(3)]
        records = make_runner(FakeAgent(answer)).run_all(scenarios, workers=3)

        assert sorted(r.scenario_id for r in records) == ["1.2.0", "1.2.1", "1.2.2"]
        assert all(r.state == ScenarioState.PASSED for r in records)
        assert peak == 1

    def test_parallel_distinct_environments(self, make_caps, environment, clock, store) -> None:
        caps = {"a": make_caps(), "b": make_caps()}
        runner = ScenarioRunner(caps, FakeAgent(GOOD_ANSWER), clock=clock, store=store)
        scenarios = [npm_scenario(id="1.2a", environment="a"), npm_scenario(id="1.2b", environment="b")]

        records = runner.run_all(scenarios, workers=2)

        assert {r.scenario_id: r.environment for r in records} == {"1.2a": "a", "1.2b": "b"}
        assert all(r.passed for r in records)

"""Tests for scenario/model.py - Scenario model classes."""

from __future__ import annotations

import pytest
from conftest import npm_scenario

from pipeline_chaos.scenario.contract import ExpectedResponseContract, contains
from pipeline_chaos.scenario.model import (
    ArtifactMutation,
    ArtifactSpec,
    ConvergenceSpec,
    FieldIn,
    NonEmpty,
    Trigger,
    function_invoked,
    pipeline_run,
    stopped_tasks,
)


class TestPredicates:
    def test_field_in(self) -> None:
        pred = FieldIn("status", ("completed",))
        assert pred({"status": "completed"})
        assert not pred({"status": "in_progress"})
        assert not pred(None)

    def test_field_in_dotted(self) -> None:
        pred = FieldIn("deployment.rolloutState", ("FAILED", "COMPLETED"))
        assert pred({"deployment": {"rolloutState": "FAILED"}})
        assert not pred({"deployment": None})

    def test_non_empty(self) -> None:
        assert NonEmpty()([{"taskArn": "t"}])
        assert not NonEmpty()([])
        assert not NonEmpty()(None)


class TestConvergenceSpec:
    def test_name_defaults_to_system(self) -> None:
        assert ConvergenceSpec(system="pipeline", terminal=NonEmpty()).name == "pipeline"

    @pytest.mark.parametrize("field", ["interval_s", "timeout_s"])
    def test_rejects_non_positive(self, field: str) -> None:
        with pytest.raises(ValueError):
            ConvergenceSpec(system="pipeline", terminal=NonEmpty(), **{field: 0})

    def test_helpers(self) -> None:
        spec = pipeline_run("deploy-ecs.yml", timeout_s=900)
        assert spec.system == "pipeline"
        assert spec.query == {"workflow": "deploy-ecs.yml"}
        assert spec.is_terminal({"status": "completed", "conclusion": "success"})
        assert stopped_tasks().interval_s == 15
        assert function_invoked().system == "function-invocation"


class TestScenario:
    def test_coerces_sequences_to_tuples(self) -> None:
        scenario = npm_scenario()
        assert isinstance(scenario.mutations, tuple)
        assert isinstance(scenario.artifacts, tuple)

    def test_contract_from_list(self) -> None:
        scenario = npm_scenario(contract=[contains("99.99.99")])
        assert isinstance(scenario.contract, ExpectedResponseContract)
        assert len(scenario.contract) == 1

    def test_commit_message(self) -> None:
        assert npm_scenario().commit_message == "TEST 1.2: npm dependency failure"
        assert npm_scenario(trigger=Trigger(message="custom")).commit_message == "custom"

    @pytest.mark.parametrize(
        "overrides, match",
        [
            ({"id": ""}, "id"),
            ({"query": "  "}, "query"),
            ({"mutations": [ArtifactMutation("a", "1"), ArtifactMutation("a", "2")]}, "duplicate mutation"),
            ({"artifacts": [ArtifactSpec("log", "x"), ArtifactSpec("log", "y")]}, "duplicate artifact"),
            ({"convergence": [pipeline_run("a.yml"), pipeline_run("b.yml")]}, "duplicate convergence"),
            ({"mutations": []}, "no mutations"),
        ],
    )
    def test_validation(self, overrides: dict, match: str) -> None:
        with pytest.raises(ValueError, match=match):
            npm_scenario(**overrides)

    def test_empty_commit_allowed_explicitly(self) -> None:
        scenario = npm_scenario(mutations=[], trigger=Trigger(allow_empty=True))
        assert scenario.mutations == ()

    def test_variant(self) -> None:
        scenario = npm_scenario()
        staging = scenario.variant(environment="staging")
        assert staging.environment == "staging"
        assert scenario.environment == "default"
        assert staging.id == scenario.id

    def test_frozen(self) -> None:
        with pytest.raises(Exception):
            npm_scenario().id = "x"  # type: ignore[misc]

    def test_mappings_are_read_only(self) -> None:
        scenario = npm_scenario(meta={"owner": "platform"})
        spec = scenario.convergence[0]
        artifact = ArtifactSpec("task-logs", "log-tail", {"from": "stopped-tasks"})

        with pytest.raises(TypeError):
            scenario.meta["owner"] = "someone-else"  # type: ignore[index]
        with pytest.raises(TypeError):
            spec.query["workflow"] = "other.yml"  # type: ignore[index]
        with pytest.raises(TypeError):
            artifact.params["from"] = "pipeline"  # type: ignore[index]

    def test_mappings_are_copied(self) -> None:
        meta = {"owner": "platform"}
        scenario = npm_scenario(meta=meta)
        meta["owner"] = "changed"
        assert scenario.meta == {"owner": "platform"}

    def test_hashable(self) -> None:
        scenario = npm_scenario(meta={"owner": "platform"})
        assert hash(scenario) == hash(npm_scenario(meta={"owner": "platform"}))
        specs = {scenario.convergence[0], pipeline_run("deploy.yml"), pipeline_run("deploy.yml")}
        assert len(specs) == 2
        artifacts = {ArtifactSpec("log", "pipeline-log", {"from": "pipeline"}), ArtifactSpec("log", "pipeline-log")}
        assert len(artifacts) == 2

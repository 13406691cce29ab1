"""Tests for store.py - append-only run records."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pipeline_chaos.core.collector import ArtifactBundle, ArtifactSlot
from pipeline_chaos.scenario.contract import RuleResult
from pipeline_chaos.scenario.report import RunRecord, StageTimestamps
from pipeline_chaos.store import ResultStore
from pipeline_chaos.types import ArtifactStatus, ErrorKind, ScenarioState, Verdict

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_record(run_id: str = "r1", scenario_id: str = "1.2", offset_s: float = 0, **kwargs) -> RunRecord:
    start = T0 + timedelta(seconds=offset_s)
    kwargs.setdefault("state", ScenarioState.PASSED)
    return RunRecord(
        run_id=run_id,
        scenario_id=scenario_id,
        title="npm dependency failure",
        timestamps=StageTimestamps(started_at=start, finished_at=start + timedelta(seconds=30)),
        **kwargs,
    )


class TestAppend:
    def test_layout(self, store: ResultStore) -> None:
        path = store.append(make_record())
        assert path == store.root / "1.2" / "r1" / "record.json"
        assert json.loads(path.read_text())["state"] == "passed"
        (summary,) = store.summaries()
        assert summary["run_id"] == "r1"
        assert summary["duration_s"] == 30.0

    def test_never_overwrites(self, store: ResultStore) -> None:
        store.append(make_record())
        with pytest.raises(FileExistsError):
            store.append(make_record(state=ScenarioState.FAILED))
        assert store.records("1.2")[0].state == ScenarioState.PASSED

    def test_writes_available_artifacts(self, store: ResultStore) -> None:
        bundle = ArtifactBundle(
            scenario_id="2.2",
            collected_at=T0,
            slots={
                "pipeline-log": ArtifactSlot(
                    name="pipeline-log", source="pipeline-log", status=ArtifactStatus.PRESENT, content="npm ERR!"
                ),
                "stopped-task": ArtifactSlot(
                    name="stopped-task",
                    source="stopped-task",
                    status=ArtifactStatus.PRESENT,
                    content={"stoppedReason": "Essential container in task exited"},
                ),
                "runtime-log": ArtifactSlot(name="runtime-log", source="runtime-log", status=ArtifactStatus.ABSENT),
            },
        )
        store.append(make_record(scenario_id="2.2", bundle=bundle))

        artifacts = store.run_dir("2.2", "r1") / "artifacts"
        assert (artifacts / "pipeline-log.txt").read_text() == "npm ERR!"
        assert json.loads((artifacts / "stopped-task.json").read_text())["stoppedReason"].startswith("Essential")
        assert not list(artifacts.glob("runtime-log.*"))

    def test_unsafe_ids_are_sanitized(self, store: ResultStore) -> None:
        path = store.append(make_record(run_id="../../etc", scenario_id="a/b"))
        assert store.root in path.parents

    def test_concurrent_appends(self, store: ResultStore) -> None:
        threads = [threading.Thread(target=store.append, args=(make_record(run_id=f"r{i}"),)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.summaries()) == 8
        assert len(store.records("1.2")) == 8


class TestQueries:
    def test_records_oldest_first(self, store: ResultStore) -> None:
        store.append(make_record(run_id="late", offset_s=60))
        store.append(make_record(run_id="early"))
        assert [r.run_id for r in store.records("1.2")] == ["early", "late"]

    def test_records_round_trip(self, store: ResultStore) -> None:
        result = RuleResult(
            name="names-failing-step",
            kind="contains",
            required=True,
            matched=False,
            rationale="'Install dependencies' not mentioned",
        )
        store.append(make_record(state=ScenarioState.FAILED, verdict=Verdict.FAIL, rule_results=[result]))
        (record,) = store.records("1.2")
        assert record.unmatched_required == [result]

    def test_latest_per_scenario(self, store: ResultStore) -> None:
        store.append(make_record(run_id="a"))
        store.append(make_record(run_id="b", scenario_id="3.1"))
        store.append(
            make_record(run_id="c", state=ScenarioState.ERRORED, error_kind=ErrorKind.AGENT, error="timeout")
        )
        latest = store.latest()
        assert list(latest) == ["1.2", "3.1"]
        assert latest["1.2"]["run_id"] == "c"
        assert latest["1.2"]["error_kind"] == "AgentError"

    def test_empty_store(self, tmp_path: Path) -> None:
        store = ResultStore(tmp_path / "fresh")
        assert store.summaries() == []
        assert store.records("1.2") == []
        assert store.latest() == {}

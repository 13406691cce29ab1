"""Tests for backends/__init__.py - wiring an environment's capability set."""

from __future__ import annotations

from pipeline_chaos.backends import Capabilities, GitWorkspace, connect
from pipeline_chaos.config import Environment, Settings


def test_connect_with_github(environment: Environment, monkeypatch) -> None:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    caps = connect(environment, Settings(github_token="ghp_test"))

    assert isinstance(caps, Capabilities)
    assert isinstance(caps.workspace, GitWorkspace)
    assert caps.workspace.root == environment.repo_path
    assert set(caps.probes) == {"pipeline", "service", "stopped-tasks", "function-invocation"}
    assert {"pipeline-run", "pipeline-log", "pipeline-jobs", "runtime-log", "function-config"} <= set(caps.sources)


def test_connect_without_github(environment: Environment) -> None:
    caps = connect(environment.model_copy(update={"github_repo": ""}), Settings())
    assert "pipeline" not in caps.probes
    assert "pipeline-log" not in caps.sources
    assert "stopped-task" in caps.sources

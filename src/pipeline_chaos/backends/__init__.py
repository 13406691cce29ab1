"""External collaborators: the capability set one environment exposes.

The core never talks to git, GitHub or AWS directly. It receives a
`Capabilities` bundle holding a workspace (for injection), probes (for
convergence) and artifact sources (for collection), keyed by name.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pipeline_chaos.backends.aws import (
    AwsControlPlane,
    FunctionConfigSource,
    FunctionInvocationProbe,
    LogTailSource,
    ServiceProbe,
    ServiceStatusSource,
    StoppedTaskSource,
    StoppedTasksProbe,
)
from pipeline_chaos.backends.git import GitWorkspace
from pipeline_chaos.backends.github import (
    GitHubActions,
    PipelineJobsSource,
    PipelineLogSource,
    PipelineRunProbe,
    PipelineRunSource,
)

if TYPE_CHECKING:
    from pipeline_chaos.config import Environment, Settings
    from pipeline_chaos.core.collector import ArtifactSource
    from pipeline_chaos.core.injector import Workspace
    from pipeline_chaos.core.poller import Probe


@dataclass
class Capabilities:
    """Everything the runner may do against one environment."""

    environment: Environment
    workspace: Workspace
    probes: dict[str, Probe] = field(default_factory=dict)
    sources: dict[str, ArtifactSource] = field(default_factory=dict)


def connect(env: Environment, settings: Settings) -> Capabilities:
    """Build the real capability set for `env`.

    Clients are created eagerly but make no calls until a scenario runs.
    """
    workspace = GitWorkspace(
        env.repo_path,
        remote=env.remote,
        branch=env.branch,
        timeout_s=env.call_timeout_s,
    )
    caps = Capabilities(environment=env, workspace=workspace)

    if env.github_repo:
        token = settings.github_token.get_secret_value() if settings.github_token else None
        actions = GitHubActions(
            env.github_repo,
            token=token,
            api_url=settings.github_api_url,
            timeout_s=env.call_timeout_s,
        )
        caps.probes["pipeline"] = PipelineRunProbe(actions)
        caps.sources["pipeline-run"] = PipelineRunSource()
        caps.sources["pipeline-log"] = PipelineLogSource(actions)
        caps.sources["pipeline-jobs"] = PipelineJobsSource(actions)

    aws = AwsControlPlane(env.aws_region, timeout_s=env.call_timeout_s)
    caps.probes["service"] = ServiceProbe(aws, env)
    caps.probes["stopped-tasks"] = StoppedTasksProbe(aws, env)
    caps.probes["function-invocation"] = FunctionInvocationProbe(aws, env)
    caps.sources["service-status"] = ServiceStatusSource(aws, env)
    caps.sources["stopped-task"] = StoppedTaskSource(aws, env)
    caps.sources["runtime-log"] = LogTailSource(aws, env, "runtime")
    caps.sources["function-log"] = LogTailSource(aws, env, "function")
    caps.sources["function-config"] = FunctionConfigSource(aws, env)
    return caps


__all__ = [
    "Capabilities",
    "connect",
    "AwsControlPlane",
    "GitHubActions",
    "GitWorkspace",
]

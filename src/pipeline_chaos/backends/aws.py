"""AWS control-plane client (ECS, CloudWatch Logs, Lambda) on boto3.

Only read calls live here: deployment units are registered and updated by
the workflows the scenarios push, not by the harness.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from pipeline_chaos.errors import CollectionError, ProbeError

if TYPE_CHECKING:
    from pipeline_chaos.config import Environment
    from pipeline_chaos.core.context import RunContext
    from pipeline_chaos.scenario.model import ArtifactSpec, ConvergenceSpec

AWS_ERRORS = (ClientError, BotoCoreError)

_TASK_FIELDS = (
    "taskArn",
    "taskDefinitionArn",
    "lastStatus",
    "desiredStatus",
    "stopCode",
    "stoppedReason",
    "startedAt",
    "stoppingAt",
    "stoppedAt",
    "containers",
)


def jsonable(value: Any) -> Any:
    """Drop SDK-specific types (datetimes, Decimals) so records serialize."""
    return json.loads(json.dumps(value, default=str))


def _error_code(e: Exception) -> str:
    if isinstance(e, ClientError):
        return e.response.get("Error", {}).get("Code", "")
    return ""


class AwsControlPlane:
    """Wrapper around the boto3 clients one environment needs.

    Args:
        region: AWS region of the cluster and functions.
        timeout_s: Connect/read timeout for every call.
        session: Optional boto3 session (profiles, tests).
    """

    def __init__(self, region: str = "us-east-1", *, timeout_s: float = 30.0, session: Any = None):
        config = Config(
            region_name=region,
            connect_timeout=timeout_s,
            read_timeout=timeout_s,
            retries={"max_attempts": 3, "mode": "adaptive"},
        )
        session = session or boto3.session.Session()
        self.region = region
        self.ecs = session.client("ecs", config=config)
        self.logs = session.client("logs", config=config)
        self.lambda_client = session.client("lambda", config=config)

    def describe_service(self, cluster: str, service: str) -> dict[str, Any] | None:
        resp = self.ecs.describe_services(cluster=cluster, services=[service])
        services = resp.get("services", [])
        if not services:
            return None
        svc = services[0]
        return jsonable(
            {
                "serviceName": svc.get("serviceName"),
                "status": svc.get("status"),
                "desiredCount": svc.get("desiredCount"),
                "runningCount": svc.get("runningCount"),
                "pendingCount": svc.get("pendingCount"),
                "taskDefinition": svc.get("taskDefinition"),
                "deployments": svc.get("deployments", []),
                "events": svc.get("events", [])[:10],
            }
        )

    def stopped_tasks(
        self,
        cluster: str,
        service: str,
        since: datetime | None = None,
        limit: int = 5,
    ) -> list[dict[str, Any]]:
        """Stopped tasks of `service`, newest first, optionally only those stopped after `since`."""
        arns = self.ecs.list_tasks(
            cluster=cluster,
            serviceName=service,
            desiredStatus="STOPPED",
            maxResults=limit,
        ).get("taskArns", [])
        if not arns:
            return []
        tasks = self.ecs.describe_tasks(cluster=cluster, tasks=arns).get("tasks", [])
        tasks = [t for t in tasks if t.get("lastStatus") == "STOPPED"]
        if since is not None:
            tasks = [t for t in tasks if t.get("stoppedAt") and t["stoppedAt"] >= since]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        tasks.sort(key=lambda t: t.get("stoppedAt") or epoch, reverse=True)
        return jsonable([{k: t.get(k) for k in _TASK_FIELDS} for t in tasks])

    def tail_logs(
        self,
        group: str,
        since: datetime,
        *,
        filter_pattern: str | None = None,
        limit: int = 1000,
    ) -> list[str]:
        """Log lines from `group` since `since`; [] when the group doesn't exist."""
        kwargs: dict[str, Any] = {
            "logGroupName": group,
            "startTime": int(since.timestamp() * 1000),
        }
        if filter_pattern:
            kwargs["filterPattern"] = filter_pattern
        lines: list[str] = []
        try:
            for page in self.logs.get_paginator("filter_log_events").paginate(**kwargs):
                for event in page.get("events", []):
                    ts = datetime.fromtimestamp(event["timestamp"] / 1000, tz=timezone.utc)
                    lines.append(f"{ts:%Y-%m-%dT%H:%M:%S} {event.get('message', '').rstrip()}")
                    if len(lines) >= limit:
                        return lines
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return []
            raise
        return lines

    def function_configuration(self, name: str) -> dict[str, Any]:
        resp = self.lambda_client.get_function_configuration(FunctionName=name)
        keys = ("FunctionName", "Runtime", "MemorySize", "Timeout", "LastModified", "LastUpdateStatus", "State")
        return jsonable({k: resp.get(k) for k in keys})


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class ServiceProbe:
    """Probe: current service descriptor (deployments, counts, events)."""

    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> dict[str, Any] | None:
        cluster = spec.query.get("cluster", self._env.ecs_cluster)
        service = spec.query.get("service", self._env.ecs_service)
        try:
            return self._aws.describe_service(cluster, service)
        except AWS_ERRORS as e:
            raise ProbeError(f"describe service {service}: {e}") from e


class StoppedTasksProbe:
    """Probe: tasks of the service that stopped after the trigger."""

    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> list[dict[str, Any]]:
        cluster = spec.query.get("cluster", self._env.ecs_cluster)
        service = spec.query.get("service", self._env.ecs_service)
        try:
            return self._aws.stopped_tasks(cluster, service, since=ctx.trigger_time)
        except AWS_ERRORS as e:
            raise ProbeError(f"list stopped tasks of {service}: {e}") from e


class FunctionInvocationProbe:
    """Probe: invocation REPORT lines logged since the trigger."""

    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> list[str]:
        group = spec.query.get("log_group") or self._env.log_group("function")
        if not group:
            raise ProbeError("no function log group configured")
        since = ctx.trigger_time or datetime.now(timezone.utc)
        try:
            return self._aws.tail_logs(group, since, filter_pattern='"REPORT RequestId"')
        except AWS_ERRORS as e:
            raise ProbeError(f"tail {group}: {e}") from e


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class ServiceStatusSource:
    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> dict[str, Any] | None:
        cluster = spec.params.get("cluster", self._env.ecs_cluster)
        service = spec.params.get("service", self._env.ecs_service)
        try:
            return self._aws.describe_service(cluster, service)
        except AWS_ERRORS as e:
            raise CollectionError(f"describe service {service}: {e}", spec.name) from e


class StoppedTaskSource:
    """Descriptor of the most recent stopped task.

    Uses the poller's observation when there is one, otherwise asks ECS.
    """

    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> dict[str, Any] | None:
        observed = ctx.observations.get(spec.params.get("from", "stopped-tasks"))
        if observed:
            return observed[0]
        try:
            tasks = self._aws.stopped_tasks(self._env.ecs_cluster, self._env.ecs_service, since=ctx.trigger_time)
        except AWS_ERRORS as e:
            raise CollectionError(f"list stopped tasks: {e}", spec.name) from e
        return tasks[0] if tasks else None


class LogTailSource:
    """Log lines since the trigger from one of the environment's log groups.

    Args:
        group_key: Key in `Environment.log_groups` ("runtime", "function").
        lookback_s: Used when the trigger time is unknown.
    """

    def __init__(self, aws: AwsControlPlane, env: Environment, group_key: str, lookback_s: float = 600.0):
        self._aws = aws
        self._env = env
        self._group_key = group_key
        self._lookback_s = lookback_s

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> str | None:
        group = spec.params.get("log_group") or self._env.log_group(self._group_key)
        if not group:
            raise CollectionError(f"no {self._group_key!r} log group configured", spec.name)
        since = ctx.trigger_time or datetime.now(timezone.utc) - timedelta(seconds=self._lookback_s)
        try:
            lines = self._aws.tail_logs(group, since)
        except AWS_ERRORS as e:
            raise CollectionError(f"tail {group}: {e}", spec.name) from e
        return "\n".join(lines) if lines else None


class FunctionConfigSource:
    def __init__(self, aws: AwsControlPlane, env: Environment):
        self._aws = aws
        self._env = env

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> dict[str, Any] | None:
        name = spec.params.get("function", self._env.lambda_function)
        try:
            return self._aws.function_configuration(name)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                return None
            raise CollectionError(f"function {name}: {e}", spec.name) from e
        except BotoCoreError as e:
            raise CollectionError(f"function {name}: {e}", spec.name) from e

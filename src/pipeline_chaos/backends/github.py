"""GitHub Actions pipeline client (REST API over httpx).

Provides the three capabilities the harness needs from the CI runner: list
recent runs for a workflow, fetch a run's jobs, and fetch a run's log.
"""

from __future__ import annotations

import io
import zipfile
from typing import TYPE_CHECKING, Any

import httpx

from pipeline_chaos.errors import CollectionError, ProbeError

if TYPE_CHECKING:
    from pipeline_chaos.core.context import RunContext
    from pipeline_chaos.scenario.model import ArtifactSpec, ConvergenceSpec

_RUN_FIELDS = (
    "id",
    "name",
    "path",
    "head_sha",
    "head_branch",
    "event",
    "status",
    "conclusion",
    "html_url",
    "run_attempt",
    "created_at",
    "updated_at",
)


def _trim_run(run: dict[str, Any]) -> dict[str, Any]:
    return {k: run.get(k) for k in _RUN_FIELDS}


class GitHubActions:
    """Thin client for the Actions endpoints of one repository.

    Example:
        actions = GitHubActions("your-org/devops-agent-test", token=os.environ["GITHUB_TOKEN"])
        run = actions.latest_run("npm-build.yml", head_sha=sha)
        print(actions.run_log(run["id"]))
    """

    def __init__(
        self,
        repo: str,
        token: str | None = None,
        api_url: str = "https://api.github.com",
        timeout_s: float = 30.0,
        client: httpx.Client | None = None,
    ):
        if not repo or repo.count("/") != 1:
            raise ValueError(f"repo must look like 'org/name', got {repo!r}")
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = client or httpx.Client(
            base_url=api_url,
            headers=headers,
            timeout=timeout_s,
            follow_redirects=True,
        )
        if client is not None:
            self._client.headers.update(headers)

    def close(self) -> None:
        self._client.close()

    def list_runs(
        self,
        workflow: str | None = None,
        *,
        head_sha: str | None = None,
        branch: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Most recent runs first. `workflow` is a file name like "build.yml"."""
        if workflow:
            url = f"/repos/{self.repo}/actions/workflows/{workflow}/runs"
        else:
            url = f"/repos/{self.repo}/actions/runs"
        params: dict[str, Any] = {"per_page": limit}
        if head_sha:
            params["head_sha"] = head_sha
        if branch:
            params["branch"] = branch
        resp = self._client.get(url, params=params)
        resp.raise_for_status()
        return [_trim_run(r) for r in resp.json().get("workflow_runs", [])]

    def latest_run(self, workflow: str | None, head_sha: str | None = None) -> dict[str, Any] | None:
        runs = self.list_runs(workflow, head_sha=head_sha, limit=1)
        return runs[0] if runs else None

    def run_jobs(self, run_id: int) -> list[dict[str, Any]]:
        """Jobs with their step names and conclusions."""
        resp = self._client.get(f"/repos/{self.repo}/actions/runs/{run_id}/jobs")
        resp.raise_for_status()
        jobs = []
        for job in resp.json().get("jobs", []):
            jobs.append(
                {
                    "name": job.get("name"),
                    "status": job.get("status"),
                    "conclusion": job.get("conclusion"),
                    "steps": [
                        {
                            "number": s.get("number"),
                            "name": s.get("name"),
                            "conclusion": s.get("conclusion"),
                        }
                        for s in job.get("steps", [])
                    ],
                }
            )
        return jobs

    def run_log(self, run_id: int) -> str | None:
        """Concatenated job logs, or None when the run produced none.

        The API serves logs as a zip archive with one text file per step.
        Runs rejected before starting (e.g. invalid workflow files) have no
        logs and answer 404/410.
        """
        resp = self._client.get(f"/repos/{self.repo}/actions/runs/{run_id}/logs")
        if resp.status_code in (404, 410):
            return None
        resp.raise_for_status()
        with zipfile.ZipFile(io.BytesIO(resp.content)) as archive:
            parts = []
            for name in sorted(n for n in archive.namelist() if n.endswith(".txt")):
                text = archive.read(name).decode("utf-8", errors="replace")
                parts.append(f"=== {name} ===\n{text.rstrip()}")
        return "\n\n".join(parts)


def _observed_run(ctx: RunContext, key: str) -> dict[str, Any] | None:
    run = ctx.observations.get(key)
    return run if isinstance(run, dict) and run.get("id") is not None else None


class PipelineRunProbe:
    """Probe: the run of a workflow that the trigger revision started.

    Returns None until GitHub has registered the run.
    """

    def __init__(self, actions: GitHubActions):
        self._actions = actions

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> dict[str, Any] | None:
        workflow = spec.query.get("workflow")
        try:
            return self._actions.latest_run(workflow, head_sha=ctx.revision)
        except httpx.HTTPError as e:
            raise ProbeError(f"listing runs for {workflow or 'all workflows'}: {e}") from e


class PipelineRunSource:
    """Source: the terminal run descriptor observed by the poller."""

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> dict[str, Any] | None:
        return _observed_run(ctx, spec.params.get("from", "pipeline"))


class PipelineLogSource:
    """Source: full log of the observed run."""

    def __init__(self, actions: GitHubActions):
        self._actions = actions

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> str | None:
        run = _observed_run(ctx, spec.params.get("from", "pipeline"))
        if run is None:
            return None
        try:
            return self._actions.run_log(run["id"])
        except (httpx.HTTPError, zipfile.BadZipFile) as e:
            raise CollectionError(f"run {run['id']} log: {e}", spec.name) from e


class PipelineJobsSource:
    """Source: job and step conclusions of the observed run."""

    def __init__(self, actions: GitHubActions):
        self._actions = actions

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> list[dict[str, Any]] | None:
        run = _observed_run(ctx, spec.params.get("from", "pipeline"))
        if run is None:
            return None
        try:
            return self._actions.run_jobs(run["id"])
        except httpx.HTTPError as e:
            raise CollectionError(f"run {run['id']} jobs: {e}", spec.name) from e

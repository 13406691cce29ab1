"""Configuration for pipeline-chaos.

Settings come from environment variables (prefix `PIPELINE_CHAOS_`) or a
`.env` file. Deployment targets are described by `Environment` objects,
either loaded from a YAML/JSON environments file or built from settings.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(BaseModel):
    """One deployment target: a source repository plus its cloud resources."""

    name: str = "default"
    repo_path: Path = Path("test-repo")
    remote: str = "origin"
    branch: str = "main"
    github_repo: str = ""
    aws_region: str = "us-east-1"
    ecs_cluster: str = "test-cluster"
    ecs_service: str = "test-api-service"
    lambda_function: str = "test-api-handler"
    log_groups: dict[str, str] = Field(
        default_factory=lambda: {
            "runtime": "/ecs/test-api",
            "function": "/aws/lambda/test-api-handler",
        }
    )
    call_timeout_s: float = Field(default=60.0, gt=0)

    @field_validator("github_repo")
    @classmethod
    def _check_repo(cls, v: str) -> str:
        if v and v.count("/") != 1:
            raise ValueError("github_repo must look like 'org/name'")
        return v

    def log_group(self, key: str) -> str | None:
        return self.log_groups.get(key)


class Settings(BaseSettings):
    """Process-wide settings.

    All settings have defaults suitable for a local run against a single
    `default` environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_CHAOS_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    results_dir: Path = Path("test-results")
    log_level: str = "INFO"
    environments_file: Path | None = None

    # Default environment, used when no environments file is given
    repo_path: Path = Path("test-repo")
    github_repo: str = Field(
        default="",
        validation_alias=AliasChoices("PIPELINE_CHAOS_GITHUB_REPO", "GITHUB_REPOSITORY"),
    )
    aws_region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("PIPELINE_CHAOS_AWS_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"),
    )
    ecs_cluster: str = "test-cluster"

    github_token: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PIPELINE_CHAOS_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"),
    )
    github_api_url: str = "https://api.github.com"

    agent_url: str | None = None
    agent_timeout_s: float = Field(default=300.0, gt=0)
    anthropic_model: str | None = None

    suite_timeout_s: float | None = None
    workers: int = Field(default=1, ge=1)

    def default_environment(self) -> Environment:
        return Environment(
            name="default",
            repo_path=self.repo_path,
            github_repo=self.github_repo,
            aws_region=self.aws_region,
            ecs_cluster=self.ecs_cluster,
        )


def _coerce_environments(data: Any) -> dict[str, Environment]:
    if isinstance(data, dict) and "environments" in data:
        data = data["environments"]
    if isinstance(data, dict):
        items = [{"name": name, **(body or {})} for name, body in data.items()]
    elif isinstance(data, list):
        items = data
    else:
        raise ValueError("environments file must hold a list or mapping of environments")

    envs: dict[str, Environment] = {}
    for item in items:
        env = Environment.model_validate(item)
        if env.name in envs:
            raise ValueError(f"duplicate environment name: {env.name}")
        envs[env.name] = env
    return envs


def load_environments(path: str | Path) -> dict[str, Environment]:
    """Load named environments from a YAML or JSON file.

    Relative `repo_path` values resolve against the file's directory.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    envs = _coerce_environments(data)
    for name, env in envs.items():
        if not env.repo_path.is_absolute():
            envs[name] = env.model_copy(update={"repo_path": path.parent / env.repo_path})
    return envs


def resolve_environments(settings: Settings) -> dict[str, Environment]:
    if settings.environments_file is not None:
        return load_environments(settings.environments_file)
    env = settings.default_environment()
    return {env.name: env}

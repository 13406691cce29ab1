"""Adapters for the diagnostic agent under test.

The agent is a black box: one natural-language question in, one
natural-language answer out.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Protocol, runtime_checkable

import anthropic
import httpx

from pipeline_chaos.errors import AgentError

DEFAULT_SYSTEM_PROMPT = (
    "You are a DevOps diagnostic assistant. Explain the root cause of the "
    "CI/CD or cloud deployment failure described by the user, cite the "
    "evidence (file, step, log line), and give a concrete fix."
)


@runtime_checkable
class DiagnosticAgent(Protocol):
    """Protocol for the agent under test."""

    def ask(self, query: str, *, context_id: str | None = None) -> str: ...


class CallableAgent:
    """Wrap a plain function as an agent.

    The function may accept `(query)` or `(query, context_id)`.
    """

    def __init__(self, fn: Callable[..., Any]):
        self._fn = fn
        try:
            params = inspect.signature(fn).parameters
        except (TypeError, ValueError):
            params = {}
        self._wants_context = "context_id" in params

    def ask(self, query: str, *, context_id: str | None = None) -> str:
        if self._wants_context:
            return self._fn(query, context_id=context_id)
        return self._fn(query)


class HttpAgent:
    """Agent reachable over HTTP.

    POSTs `{"query": ..., "context_id": ...}` and accepts either a JSON body
    with a `response`, `answer` or `output` field, or plain text.
    """

    RESPONSE_KEYS = ("response", "answer", "output", "text")

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 300.0,
        headers: dict[str, str] | None = None,
        client: httpx.Client | None = None,
    ):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout_s, headers=headers or {})

    def close(self) -> None:
        self._client.close()

    def ask(self, query: str, *, context_id: str | None = None) -> str:
        try:
            resp = self._client.post(self.url, json={"query": query, "context_id": context_id})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise AgentError(f"agent at {self.url}: {e}") from e

        if "json" not in resp.headers.get("content-type", ""):
            return resp.text
        body = resp.json()
        if isinstance(body, str):
            return body
        if isinstance(body, dict):
            for key in self.RESPONSE_KEYS:
                if isinstance(body.get(key), str):
                    return body[key]
        raise AgentError(f"agent at {self.url} returned no text field in {sorted(body) if isinstance(body, dict) else type(body).__name__}")


class AnthropicAgent:
    """Reference agent backed by the Anthropic Messages API.

    Useful as a baseline: run the catalog with `attach_artifacts` and see
    what a plain model explains from the same evidence.
    """

    def __init__(
        self,
        model: str,
        *,
        system: str = DEFAULT_SYSTEM_PROMPT,
        max_tokens: int = 2048,
        timeout_s: float = 300.0,
        client: anthropic.Anthropic | None = None,
    ):
        self.model = model
        self.system = system
        self.max_tokens = max_tokens
        self._client = client or anthropic.Anthropic(timeout=timeout_s)

    def ask(self, query: str, *, context_id: str | None = None) -> str:
        try:
            message = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=self.system,
                messages=[{"role": "user", "content": query}],
            )
        except anthropic.APIError as e:
            raise AgentError(f"anthropic {self.model}: {e}") from e
        return "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )

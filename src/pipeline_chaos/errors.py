"""Error taxonomy for pipeline-chaos.

Every error carries an `ErrorKind` so the runner can attach it to the run
record without inspecting exception types.
"""

from __future__ import annotations

from typing import Any

from pipeline_chaos.types import ErrorKind


class PipelineChaosError(Exception):
    """Base class for all pipeline-chaos errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class InjectionError(PipelineChaosError):
    """Mutations could not be written, committed, or published."""

    kind = ErrorKind.INJECTION


class ConvergenceTimeout(PipelineChaosError):
    """A terminal state was not observed within the ceiling."""

    kind = ErrorKind.CONVERGENCE_TIMEOUT

    def __init__(
        self,
        system: str,
        timeout_s: float,
        elapsed_s: float,
        last_result: Any = None,
        attempts: int = 0,
    ):
        self.system = system
        self.timeout_s = timeout_s
        self.elapsed_s = elapsed_s
        self.last_result = last_result
        self.attempts = attempts
        # Results of earlier systems in a multi-system wait
        self.completed: list[Any] = []
        super().__init__(
            f"{system}: no terminal state after {elapsed_s:.1f}s "
            f"(ceiling {timeout_s:.1f}s, {attempts} polls)"
        )


class CollectionError(PipelineChaosError):
    """An artifact source was unreachable. Non-fatal per slot."""

    kind = ErrorKind.COLLECTION

    def __init__(self, message: str, artifact: str | None = None):
        self.artifact = artifact
        super().__init__(message)


class ValidatorInputError(PipelineChaosError):
    """The agent response is empty or not text."""

    kind = ErrorKind.VALIDATOR_INPUT


class Cancelled(PipelineChaosError):
    """Operator- or suite-level abort."""

    kind = ErrorKind.CANCELLED


class AgentError(PipelineChaosError):
    """The agent under test could not be reached or timed out."""

    kind = ErrorKind.AGENT


class PreconditionError(PipelineChaosError):
    """A manual precondition was declined."""

    kind = ErrorKind.PRECONDITION


class ProbeError(PipelineChaosError):
    """A single polling query failed transiently.

    The poller treats this as a non-terminal observation and keeps polling.
    """

    kind = ErrorKind.CONVERGENCE_TIMEOUT

"""Core type definitions for pipeline-chaos.

This module contains the enums shared across the codebase. Backend-specific
types (GitHub, AWS) are kept in backends/ to avoid leaking SDK dependencies.
"""

from __future__ import annotations

from enum import Enum


class ScenarioState(str, Enum):
    """Lifecycle states of a single scenario execution."""

    PENDING = "pending"
    INJECTING = "injecting"  # Write mutations, commit, publish
    CONVERGING = "converging"  # Poll external systems for a terminal state
    COLLECTING = "collecting"  # Harvest logs/metadata into a bundle
    VALIDATING = "validating"  # Query the agent and score its response
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (ScenarioState.PASSED, ScenarioState.FAILED, ScenarioState.ERRORED)


# Stages in the only order the runner may enter them.
STAGE_ORDER: tuple[ScenarioState, ...] = (
    ScenarioState.PENDING,
    ScenarioState.INJECTING,
    ScenarioState.CONVERGING,
    ScenarioState.COLLECTING,
    ScenarioState.VALIDATING,
)


class Verdict(str, Enum):
    """Outcome of validating an agent response against a contract."""

    PASS = "pass"
    FAIL = "fail"


class ErrorKind(str, Enum):
    """Why a scenario could not reach a verdict (or why a slot is empty)."""

    INJECTION = "InjectionError"
    CONVERGENCE_TIMEOUT = "ConvergenceTimeout"
    COLLECTION = "CollectionError"
    VALIDATOR_INPUT = "ValidatorInputError"
    CANCELLED = "Cancelled"
    AGENT = "AgentError"
    PRECONDITION = "PreconditionError"
    INTERNAL = "InternalError"


class ArtifactStatus(str, Enum):
    """State of one slot in an artifact bundle."""

    PRESENT = "present"
    ABSENT = "absent"  # Retrieved, but missing or empty
    ERROR = "error"  # Source unreachable or retrieval raised

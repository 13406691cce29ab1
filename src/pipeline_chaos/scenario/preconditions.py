"""Manual preconditions: human steps awaited before injection."""

from __future__ import annotations

import sys
from typing import TYPE_CHECKING, Callable, Protocol, TextIO, runtime_checkable

if TYPE_CHECKING:
    from pipeline_chaos.scenario.model import ManualPrecondition, Scenario


@runtime_checkable
class Confirmer(Protocol):
    """Decides whether a manual step has been completed."""

    def confirm(self, scenario: Scenario, precondition: ManualPrecondition) -> bool: ...


class AutoConfirmer:
    """Confirms everything. For CI runs where the steps are scripted elsewhere."""

    def confirm(self, scenario: Scenario, precondition: ManualPrecondition) -> bool:
        return True


class ConsoleConfirmer:
    """Prints the instructions and waits for the operator.

    An empty answer or "y"/"yes" confirms; anything else declines.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        read: Callable[[], str] | None = None,
    ):
        self._stream = stream or sys.stderr
        self._read = read or sys.stdin.readline

    def confirm(self, scenario: Scenario, precondition: ManualPrecondition) -> bool:
        out = self._stream
        out.write(f"\nManual step required for {scenario.id} ({precondition.name}):\n")
        for line in precondition.instructions.strip().splitlines():
            out.write(f"  {line}\n")
        out.write("Press Enter when ready to continue (or type 'skip'): ")
        out.flush()
        answer = self._read().strip().lower()
        return answer in ("", "y", "yes")

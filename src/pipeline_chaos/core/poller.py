"""Convergence poller: wait for external systems to reach a terminal state.

Polling is fixed-interval, not exponential: CI runners and cloud control
planes change state in bursts, and the ceiling (not the interval) is what
differs between a lint failure and a service stabilization.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pipeline_chaos.core.clock import Clock, SystemClock
from pipeline_chaos.errors import ConvergenceTimeout, ProbeError

if TYPE_CHECKING:
    from pipeline_chaos.core.context import RunContext
    from pipeline_chaos.core.recorder import Recorder
    from pipeline_chaos.scenario.model import ConvergenceSpec

logger = logging.getLogger(__name__)


@runtime_checkable
class Probe(Protocol):
    """A polling query against one external system.

    Implementations raise ProbeError for transient failures; the poller
    counts those as non-terminal observations.
    """

    def query(self, spec: ConvergenceSpec, ctx: RunContext) -> Any: ...


@dataclass(frozen=True)
class ConvergenceResult:
    """A terminal observation."""

    name: str
    system: str
    result: Any
    elapsed_s: float
    attempts: int
    observed_at: datetime


class ConvergencePoller:
    """Polls probes until a spec's terminal predicate holds or its ceiling passes.

    Args:
        probes: Probe per system name, from the environment's capabilities.
        clock: Time source; FakeClock in tests.
        recorder: Optional recorder for per-attempt events.
    """

    def __init__(
        self,
        probes: Mapping[str, Probe],
        clock: Clock | None = None,
        recorder: Recorder | None = None,
    ):
        self._probes = dict(probes)
        self._clock = clock or SystemClock()
        self._recorder = recorder

    def poll(self, spec: ConvergenceSpec, ctx: RunContext) -> ConvergenceResult:
        """Poll one system.

        Raises:
            ConvergenceTimeout: ceiling exceeded; carries the last observation.
            Cancelled: the run's cancel token fired.
            KeyError: no probe registered for `spec.system`.
        """
        probe = self._probes.get(spec.system)
        if probe is None:
            raise KeyError(f"no probe for system {spec.system!r}")

        clock = self._clock
        start = clock.monotonic()
        attempts = 0
        last: Any = None

        while True:
            ctx.cancel.raise_if_cancelled()
            attempts += 1
            error: str | None = None
            try:
                last = probe.query(spec, ctx)
                terminal = spec.is_terminal(last)
            except ProbeError as e:
                error = str(e)
                terminal = False
            elapsed = clock.monotonic() - start

            if self._recorder is not None:
                self._recorder.poll(spec.name, attempts, terminal, elapsed, error)

            # A terminal state seen after the ceiling does not count.
            if terminal and elapsed <= spec.timeout_s:
                logger.info(
                    "[%s] %s converged after %.1fs (%d polls)",
                    ctx.scenario_id,
                    spec.name,
                    elapsed,
                    attempts,
                )
                return ConvergenceResult(
                    name=spec.name,
                    system=spec.system,
                    result=last,
                    elapsed_s=elapsed,
                    attempts=attempts,
                    observed_at=clock.now(),
                )

            remaining = spec.timeout_s - elapsed
            if remaining <= 0:
                raise ConvergenceTimeout(
                    system=spec.name,
                    timeout_s=spec.timeout_s,
                    elapsed_s=elapsed,
                    last_result=last,
                    attempts=attempts,
                )
            clock.sleep(min(spec.interval_s, remaining), ctx.cancel)

    def poll_all(self, specs: list[ConvergenceSpec] | tuple[ConvergenceSpec, ...], ctx: RunContext) -> list[ConvergenceResult]:
        """Poll specs one after another.

        Later systems are only meaningful once earlier ones are terminal, so
        they are never polled concurrently. Each terminal observation is
        stored in `ctx.observations` under the spec's name before the next
        spec starts. On timeout, the results gathered so far are attached to
        the exception as `completed`.
        """
        results: list[ConvergenceResult] = []
        for spec in specs:
            try:
                result = self.poll(spec, ctx)
            except ConvergenceTimeout as e:
                e.completed = list(results)
                raise
            ctx.observations[spec.name] = result.result
            results.append(result)
        return results

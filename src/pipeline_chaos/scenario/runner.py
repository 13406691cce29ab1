"""Scenario runner.

Drives one scenario through
    Pending -> Injecting -> Converging -> Collecting -> Validating -> {Passed, Failed, Errored}
and a suite of scenarios either sequentially (the default, since most
scenarios share one repository) or on worker threads. The runner is the only
recovery point: any stage failure becomes an Errored record and the suite
moves on to the next scenario.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from pipeline_chaos.core.clock import CancelToken, Clock, SystemClock
from pipeline_chaos.core.collector import ArtifactBundle, ArtifactCollector
from pipeline_chaos.core.context import RunContext
from pipeline_chaos.core.injector import FaultInjector
from pipeline_chaos.core.poller import ConvergencePoller, ConvergenceResult
from pipeline_chaos.core.recorder import Recorder
from pipeline_chaos.errors import (
    AgentError,
    Cancelled,
    CollectionError,
    ConvergenceTimeout,
    InjectionError,
    PipelineChaosError,
    PreconditionError,
)
from pipeline_chaos.events.sink import EventSink, NullSink
from pipeline_chaos.scenario.preconditions import AutoConfirmer, Confirmer
from pipeline_chaos.scenario.report import ConvergenceOutcome, RunRecord, StageTimestamps
from pipeline_chaos.scenario.validator import ResponseValidator, ValidationResult
from pipeline_chaos.types import STAGE_ORDER, ErrorKind, ScenarioState, Verdict

if TYPE_CHECKING:
    from pipeline_chaos.backends import Capabilities
    from pipeline_chaos.backends.agent import DiagnosticAgent
    from pipeline_chaos.scenario.model import Scenario
    from pipeline_chaos.store import ResultStore

logger = logging.getLogger(__name__)

_LOCK_POLL_S = 0.5


def new_run_id(clock: Clock) -> str:
    return f"{clock.now():%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"


def compose_query(scenario: Scenario, bundle: ArtifactBundle | None, attach: bool) -> str:
    """The question put to the agent, optionally followed by the evidence."""
    if not attach or bundle is None or not len(bundle):
        return scenario.query
    return f"{scenario.query}\n\nCollected evidence:\n\n{bundle.render()}"


class _RunState:
    """Mutable scratchpad for one run; frozen into a RunRecord at the end."""

    def __init__(self, scenario: Scenario, run_id: str, clock: Clock):
        self.scenario = scenario
        self.run_id = run_id
        self.clock = clock
        self.state = ScenarioState.PENDING
        self._last_stamp: datetime = clock.now()
        self.started_at = self._last_stamp
        self.trigger_time: datetime | None = None
        self.convergence_times: list[datetime] = []
        self.collection_time: datetime | None = None
        self.validation_time: datetime | None = None
        self.revision: str | None = None
        self.convergence: list[ConvergenceOutcome] = []
        self.bundle: ArtifactBundle | None = None
        self.query: str | None = None
        self.response: str | None = None
        self.validation: ValidationResult | None = None
        self.error_kind: ErrorKind | None = None
        self.error: str | None = None

    def stamp(self, value: datetime | None = None) -> datetime:
        """Timestamp that never goes backwards within this run."""
        value = value or self.clock.now()
        if value < self._last_stamp:
            value = self._last_stamp
        self._last_stamp = value
        return value

    def add_convergence(self, result: ConvergenceResult) -> None:
        observed = self.stamp(result.observed_at)
        self.convergence_times.append(observed)
        self.convergence.append(
            ConvergenceOutcome(
                name=result.name,
                system=result.system,
                terminal=True,
                elapsed_s=result.elapsed_s,
                attempts=result.attempts,
                observed_at=observed,
                last_result=result.result,
            )
        )

    def freeze(self) -> RunRecord:
        validation = self.validation
        return RunRecord(
            run_id=self.run_id,
            scenario_id=self.scenario.id,
            title=self.scenario.title,
            environment=self.scenario.environment,
            state=self.state,
            verdict=validation.verdict if validation else None,
            error_kind=self.error_kind,
            error=self.error,
            revision=self.revision,
            convergence=self.convergence,
            bundle=self.bundle,
            query=self.query,
            response=self.response,
            rule_results=list(validation.rule_results) if validation else [],
            advisory_ratio=validation.advisory_ratio if validation else None,
            timestamps=StageTimestamps(
                started_at=self.started_at,
                trigger_time=self.trigger_time,
                convergence_times=self.convergence_times,
                collection_time=self.collection_time,
                validation_time=self.validation_time,
                finished_at=self.stamp(),
            ),
            meta=dict(self.scenario.meta),
        )


class ScenarioRunner:
    """Runs scenarios against their environments and records the outcome.

    Args:
        environments: Capability set per environment name.
        agent: The diagnostic agent under test.
        store: Where finished run records are persisted (optional).
        sink: Event sink for lifecycle events (optional).
        confirmer: Awaits manual preconditions; defaults to AutoConfirmer.
        clock: Time source; FakeClock in tests.
        attach_artifacts: Append the bundle to every agent query, in
            addition to scenarios that ask for it themselves.

    Example:
        runner = ScenarioRunner({"default": connect(env, settings)}, HttpAgent(url))
        records = runner.run_all(get_scenarios())
        raise SystemExit(0 if all(r.passed for r in records) else 1)
    """

    def __init__(
        self,
        environments: Mapping[str, Capabilities],
        agent: DiagnosticAgent,
        *,
        store: ResultStore | None = None,
        sink: EventSink | None = None,
        confirmer: Confirmer | None = None,
        clock: Clock | None = None,
        validator: ResponseValidator | None = None,
        attach_artifacts: bool = False,
    ):
        self._environments = dict(environments)
        self._agent = agent
        self._store = store
        self._sink: EventSink = sink if sink is not None else NullSink()
        self._confirmer: Confirmer = confirmer or AutoConfirmer()
        self._clock = clock or SystemClock()
        self._validator = validator or ResponseValidator()
        self._attach_artifacts = attach_artifacts
        # Write-exclusive per environment, not global: scenarios against
        # distinct environments may run concurrently.
        self._env_locks: dict[str, threading.Lock] = {}
        self._env_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _env_lock(self, name: str) -> threading.Lock:
        with self._env_locks_guard:
            return self._env_locks.setdefault(name, threading.Lock())

    def _acquire(self, lock: threading.Lock, cancel: CancelToken) -> None:
        while not lock.acquire(timeout=_LOCK_POLL_S):
            cancel.raise_if_cancelled()
        if cancel.cancelled:
            lock.release()
            cancel.raise_if_cancelled()

    def _enter(self, run: _RunState, state: ScenarioState, recorder: Recorder, cancel: CancelToken) -> None:
        cancel.raise_if_cancelled()
        if STAGE_ORDER.index(state) != STAGE_ORDER.index(run.state) + 1:
            raise RuntimeError(f"illegal transition {run.state.value} -> {state.value}")
        previous, run.state = run.state, state
        recorder.stage(state, previous)

    def _await_preconditions(self, scenario: Scenario, cancel: CancelToken) -> None:
        for precondition in scenario.preconditions:
            cancel.raise_if_cancelled()
            if not self._confirmer.confirm(scenario, precondition):
                raise PreconditionError(f"manual step {precondition.name!r} was not confirmed")

    def _ask(self, query: str, scenario: Scenario) -> Any:
        try:
            return self._agent.ask(query, context_id=scenario.id)
        except PipelineChaosError:
            raise
        except Exception as e:
            raise AgentError(f"{type(e).__name__}: {e}") from e

    @staticmethod
    def _check_evidence(scenario: Scenario, bundle: ArtifactBundle) -> None:
        """Escalate to Errored when no evidence backs any required rule."""
        needed = scenario.contract.required_artifacts
        if needed and needed <= bundle.unavailable():
            raise CollectionError(
                "every artifact needed by required rules is unavailable: " + ", ".join(sorted(needed))
            )

    # ------------------------------------------------------------------
    # one scenario
    # ------------------------------------------------------------------

    def run(self, scenario: Scenario, cancel: CancelToken | None = None) -> RunRecord:
        """Run one scenario. Never raises for scenario-level failures."""
        cancel = cancel or CancelToken()
        run = _RunState(scenario, new_run_id(self._clock), self._clock)
        recorder = Recorder(self._sink, run_id=run.run_id, scenario_id=scenario.id)
        recorder.scenario_started(scenario.title, scenario.environment)

        try:
            self._execute(scenario, run, recorder, cancel)
        except KeyboardInterrupt:
            cancel.cancel("interrupted by operator")
            self._errored(run, Cancelled("interrupted by operator"))
        except PipelineChaosError as e:
            self._errored(run, e)
        except Exception as e:
            logger.exception("[%s] unexpected failure", scenario.id)
            run.state = ScenarioState.ERRORED
            run.error_kind = ErrorKind.INTERNAL
            run.error = f"{type(e).__name__}: {e}"

        record = run.freeze()
        recorder.scenario_finished(record)
        if self._store is not None:
            try:
                self._store.append(record)
            except (OSError, ValueError):
                logger.exception("[%s] could not persist run %s", scenario.id, record.run_id)
        return record

    def _errored(self, run: _RunState, error: PipelineChaosError) -> None:
        if isinstance(error, ConvergenceTimeout):
            for result in error.completed:
                if not any(c.name == result.name for c in run.convergence):
                    run.add_convergence(result)
            run.convergence.append(
                ConvergenceOutcome(
                    name=error.system,
                    system=error.system,
                    terminal=False,
                    elapsed_s=error.elapsed_s,
                    attempts=error.attempts,
                    last_result=error.last_result,
                )
            )
        run.state = ScenarioState.ERRORED
        run.error_kind = error.kind
        run.error = str(error)

    def _execute(self, scenario: Scenario, run: _RunState, recorder: Recorder, cancel: CancelToken) -> None:
        cancel.raise_if_cancelled()
        caps = self._environments.get(scenario.environment)
        if caps is None:
            raise InjectionError(f"unknown environment {scenario.environment!r}")

        lock = self._env_lock(scenario.environment)
        self._acquire(lock, cancel)
        try:
            self._await_preconditions(scenario, cancel)

            self._enter(run, ScenarioState.INJECTING, recorder, cancel)
            receipt = FaultInjector(caps.workspace, self._clock).inject(scenario, cancel)
            run.revision = receipt.revision
            run.trigger_time = run.stamp(receipt.triggered_at)

            ctx = RunContext(
                run_id=run.run_id,
                scenario=scenario,
                environment=caps.environment,
                revision=receipt.revision,
                trigger_time=run.trigger_time,
                cancel=cancel,
            )

            self._enter(run, ScenarioState.CONVERGING, recorder, cancel)
            poller = ConvergencePoller(caps.probes, self._clock, recorder)
            for result in poller.poll_all(scenario.convergence, ctx):
                run.add_convergence(result)

            self._enter(run, ScenarioState.COLLECTING, recorder, cancel)
            collector = ArtifactCollector(caps.sources, self._clock, recorder)
            run.bundle = collector.collect(scenario.artifacts, ctx)
            run.collection_time = run.stamp(run.bundle.collected_at)
            self._check_evidence(scenario, run.bundle)

            self._enter(run, ScenarioState.VALIDATING, recorder, cancel)
            run.query = compose_query(scenario, run.bundle, self._attach_artifacts or scenario.attach_artifacts)
            run.response = self._ask(run.query, scenario)
            run.validation = self._validator.validate(run.response, scenario.contract, run.bundle)
            run.validation_time = run.stamp()
            recorder.verdict(run.validation)
            run.state = ScenarioState.PASSED if run.validation.verdict == Verdict.PASS else ScenarioState.FAILED
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # suites
    # ------------------------------------------------------------------

    def run_all(
        self,
        scenarios: list[Scenario],
        *,
        workers: int = 1,
        cancel: CancelToken | None = None,
        suite_timeout_s: float | None = None,
        on_start: Callable[[int, Scenario], None] | None = None,
        on_finish: Callable[[Scenario, RunRecord], None] | None = None,
    ) -> list[RunRecord]:
        """Run every scenario; one scenario's failure never stops the others.

        Sequential runs return records in scenario order. With `workers > 1`
        scenarios run on threads (serialized per environment) and records are
        returned in completion order.

        Args:
            on_start: Called with (1-based position, scenario) before each run.
            on_finish: Called with (scenario, record) after each run.
        """
        cancel = cancel or CancelToken()

        def run_one(index: int, scenario: Scenario) -> RunRecord:
            if on_start is not None:
                on_start(index, scenario)
            record = self.run(scenario, cancel)
            if on_finish is not None:
                on_finish(scenario, record)
            return record

        timer: threading.Timer | None = None
        if suite_timeout_s is not None:
            timer = threading.Timer(suite_timeout_s, cancel.cancel, args=(f"suite timeout after {suite_timeout_s:.0f}s",))
            timer.daemon = True
            timer.start()
        try:
            if workers <= 1 or len(scenarios) <= 1:
                return [run_one(i, s) for i, s in enumerate(scenarios, 1)]
            return self._run_parallel(scenarios, workers, cancel, run_one)
        finally:
            if timer is not None:
                timer.cancel()

    def _run_parallel(
        self,
        scenarios: list[Scenario],
        workers: int,
        cancel: CancelToken,
        run_one: Callable[[int, Scenario], RunRecord],
    ) -> list[RunRecord]:
        records: list[RunRecord] = []
        with ThreadPoolExecutor(max_workers=min(workers, len(scenarios)), thread_name_prefix="scenario") as pool:
            pending = {pool.submit(run_one, i, s) for i, s in enumerate(scenarios, 1)}
            while pending:
                try:
                    for future in as_completed(pending):
                        pending.discard(future)
                        records.append(future.result())
                except KeyboardInterrupt:
                    cancel.cancel("interrupted by operator")
        return records

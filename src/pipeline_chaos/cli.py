from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import TYPE_CHECKING

import yaml
from pydantic import ValidationError

from pipeline_chaos.types import ScenarioState

if TYPE_CHECKING:
    from pipeline_chaos.backends.agent import DiagnosticAgent
    from pipeline_chaos.config import Settings
    from pipeline_chaos.scenario.model import Scenario
    from pipeline_chaos.scenario.report import RunRecord

logger = logging.getLogger("pipeline_chaos")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


class UsageError(Exception):
    """Bad arguments or configuration; exits with status 2."""


def _setup_logging(level: str | int = logging.INFO) -> None:
    """Configure logging for the pipeline-chaos CLI."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers[:] = [handler]
    logger.setLevel(level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipeline-chaos",
        description="Fault-scenario harness for CI/CD diagnostic agents.",
    )
    sub = parser.add_subparsers(dest="cmd", required=False)

    run_p = sub.add_parser(
        "run",
        help="Run scenarios (built-in catalog by default) against the agent",
    )
    run_p.add_argument(
        "targets",
        nargs="*",
        help="Targets: path/to/file.py, package.module:attr, catalog.yaml or a directory "
        "(default: built-in catalog)",
    )
    run_p.add_argument(
        "--scenario",
        "-s",
        action="append",
        default=[],
        metavar="ID",
        help="Run only this scenario id (repeatable)",
    )
    run_p.add_argument(
        "--env",
        default=None,
        metavar="NAME",
        help="Run every selected scenario against this environment",
    )
    run_p.add_argument(
        "--results-dir",
        default=None,
        help="Directory where run records are written (default: ./test-results)",
    )
    run_p.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Scenarios to run at once; scenarios sharing an environment still run one at a time",
    )
    run_p.add_argument(
        "--suite-timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Cancel whatever is still running after this many seconds",
    )
    run_p.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Treat manual preconditions as already done (no prompts)",
    )
    run_p.add_argument(
        "--no-events",
        action="store_true",
        help="Do not write events.jsonl (still writes run records)",
    )
    run_p.add_argument(
        "--attach-artifacts",
        action="store_true",
        help="Append the collected evidence to every agent query",
    )
    agent = run_p.add_mutually_exclusive_group()
    agent.add_argument("--agent-url", default=None, help="HTTP endpoint of the agent under test")
    agent.add_argument(
        "--anthropic-model",
        default=None,
        help="Use an Anthropic model as the agent (baseline runs)",
    )
    run_p.add_argument("--verbose", "-v", action="store_true", help="Log every poll and stage change")

    list_p = sub.add_parser("list", help="List scenarios")
    list_p.add_argument("targets", nargs="*", help="Targets (default: built-in catalog)")

    show_p = sub.add_parser("show", help="Show the latest outcome per scenario")
    show_p.add_argument("results_dir", help="Directory written by 'pipeline-chaos run'")
    return parser


def _load(targets: list[str], ids: list[str] | None = None) -> list[Scenario]:
    from pipeline_chaos.scenario.loader import load_scenarios, select

    try:
        return select(load_scenarios(targets), ids)
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as e:
        raise UsageError(f"scenario target not found: {e}") from e
    except yaml.YAMLError as e:
        raise UsageError(f"malformed scenario file: {e}") from e
    except (KeyError, ValueError, TypeError, AttributeError, ImportError) as e:
        raise UsageError(str(e).strip("'\"")) from e


def _build_agent(args: argparse.Namespace, settings: Settings) -> DiagnosticAgent:
    from pipeline_chaos.backends.agent import AnthropicAgent, HttpAgent

    if args.agent_url:
        return HttpAgent(args.agent_url, timeout_s=settings.agent_timeout_s)
    if args.anthropic_model:
        return AnthropicAgent(args.anthropic_model, timeout_s=settings.agent_timeout_s)
    if settings.agent_url:
        return HttpAgent(settings.agent_url, timeout_s=settings.agent_timeout_s)
    if settings.anthropic_model:
        return AnthropicAgent(settings.anthropic_model, timeout_s=settings.agent_timeout_s)
    raise UsageError(
        "no agent configured: pass --agent-url or --anthropic-model "
        "(or set PIPELINE_CHAOS_AGENT_URL / PIPELINE_CHAOS_ANTHROPIC_MODEL)"
    )


def _report(scenario: Scenario, record: RunRecord) -> None:
    duration = f" ({record.duration_s:.1f}s)" if record.duration_s is not None else ""
    if record.state == ScenarioState.PASSED:
        extra = f", advisory {record.advisory_ratio:.0%}" if record.advisory_ratio is not None else ""
        logger.info(f"  ✓ PASSED{duration}{extra}")
    elif record.state == ScenarioState.FAILED:
        logger.info(f"  ✗ FAILED{duration}")
        for rule in record.unmatched_required:
            logger.info(f"    • {rule.name}: {rule.rationale}")
    else:
        kind = record.error_kind.value if record.error_kind else "InternalError"
        logger.info(f"  ! ERRORED ({kind}){duration}")
        if record.error:
            logger.info(f"    Error: {record.error}")
    if scenario.reminder:
        logger.warning(f"  ⚠ {scenario.reminder}")


def _cmd_run(args: argparse.Namespace) -> int:
    from pipeline_chaos.backends import connect
    from pipeline_chaos.config import Settings, resolve_environments
    from pipeline_chaos.core.clock import CancelToken
    from pipeline_chaos.events.jsonl import JsonlSink
    from pipeline_chaos.scenario.preconditions import AutoConfirmer, ConsoleConfirmer
    from pipeline_chaos.scenario.runner import ScenarioRunner
    from pipeline_chaos.store import ResultStore

    try:
        settings = Settings()
        environments = resolve_environments(settings)
    except (ValidationError, ValueError, OSError, yaml.YAMLError) as e:
        raise UsageError(f"invalid configuration: {e}") from e
    _setup_logging("DEBUG" if args.verbose else settings.log_level.upper())

    scenarios = _load(args.targets, args.scenario)
    if args.env:
        if args.env not in environments:
            raise UsageError(f"unknown environment {args.env!r} (known: {', '.join(environments)})")
        scenarios = [s.variant(environment=args.env) for s in scenarios]
    unknown = sorted({s.environment for s in scenarios} - set(environments))
    if unknown:
        raise UsageError(f"scenarios target unknown environment(s): {', '.join(unknown)}")

    workers = args.workers if args.workers is not None else settings.workers
    if workers < 1:
        raise UsageError("--workers must be at least 1")
    suite_timeout = args.suite_timeout if args.suite_timeout is not None else settings.suite_timeout_s
    results_dir = Path(args.results_dir) if args.results_dir else settings.results_dir

    agent = _build_agent(args, settings)
    try:
        capabilities = {
            name: connect(env, settings)
            for name, env in environments.items()
            if name in {s.environment for s in scenarios}
        }
    except ValueError as e:
        raise UsageError(f"invalid environment: {e}") from e

    store = ResultStore(results_dir)
    sink = None if args.no_events else JsonlSink(results_dir / "events.jsonl")
    runner = ScenarioRunner(
        capabilities,
        agent,
        store=store,
        sink=sink,
        confirmer=AutoConfirmer() if args.yes else ConsoleConfirmer(),
        attach_artifacts=args.attach_artifacts,
    )

    total = len(scenarios)
    logger.info(f"\nRunning {total} scenario(s) with {min(workers, max(total, 1))} worker(s)...\n")

    def on_start(index: int, scenario: Scenario) -> None:
        logger.info(f"[{index}/{total}] {scenario.id} {scenario.title}...")

    cancel = CancelToken()
    try:
        records = runner.run_all(
            scenarios,
            workers=workers,
            cancel=cancel,
            suite_timeout_s=suite_timeout,
            on_start=on_start,
            on_finish=_report,
        )
    except KeyboardInterrupt:
        cancel.cancel("interrupted by operator")
        logger.error("Interrupted.")
        return EXIT_FAILED
    finally:
        if sink is not None:
            sink.close()

    passed = sum(1 for r in records if r.state == ScenarioState.PASSED)
    failed = sum(1 for r in records if r.state == ScenarioState.FAILED)
    errored = sum(1 for r in records if r.state == ScenarioState.ERRORED)
    logger.info("")
    logger.info(f"Results: {passed} passed, {failed} failed, {errored} errored, {total} total")
    logger.info(f"Results saved to: {results_dir}")
    return EXIT_OK if passed == total else EXIT_FAILED


def _cmd_list(args: argparse.Namespace) -> int:
    _setup_logging()
    for scenario in _load(args.targets):
        logger.info(f"{scenario.id:<6} {scenario.title}")
    return EXIT_OK


def _cmd_show(args: argparse.Namespace) -> int:
    from pipeline_chaos.store import ResultStore

    _setup_logging()
    root = Path(args.results_dir)
    if not root.is_dir():
        raise UsageError(f"no results directory at {root}")
    latest = ResultStore(root).latest()
    if not latest:
        logger.info(f"No runs recorded in {root}")
        return EXIT_OK
    for scenario_id, summary in latest.items():
        outcome = summary["state"].upper()
        if summary.get("error_kind"):
            outcome += f" ({summary['error_kind']})"
        logger.info(f"{scenario_id:<6} {outcome:<32} {summary['run_id']}  {summary.get('title', '')}")
        for name in summary.get("unmatched_required") or []:
            logger.info(f"       • unmatched: {name}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """Console script entry point (`pipeline-chaos`)."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    commands = {"run": _cmd_run, "list": _cmd_list, "show": _cmd_show}
    command = commands.get(args.cmd)
    if command is None:
        parser.print_help()
        raise SystemExit(EXIT_USAGE)

    try:
        code = command(args)
    except UsageError as e:
        _setup_logging()
        logger.error(f"error: {e}")
        code = EXIT_USAGE
    raise SystemExit(code)

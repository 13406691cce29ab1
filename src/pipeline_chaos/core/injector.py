"""Fault injection: write a scenario's mutations and publish them.

This is the one place the harness intentionally changes external state (the
target repository's history), so nothing here is ever retried.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pipeline_chaos.core.clock import CancelToken, Clock, SystemClock
from pipeline_chaos.errors import InjectionError, PipelineChaosError

if TYPE_CHECKING:
    from pipeline_chaos.scenario.model import Scenario

logger = logging.getLogger(__name__)


@runtime_checkable
class Workspace(Protocol):
    """A writable checkout of the target repository."""

    root: Path

    def commit(self, paths: list[str], message: str, allow_empty: bool = False) -> str:
        """Stage `paths`, commit them as one unit and return the revision id."""
        ...

    def publish(self, branch: str | None = None) -> None:
        """Push committed changes so the pipeline reacts."""
        ...

    def discard(self, paths: list[str], revision: str | None = None) -> None:
        """Drop an unpublished `revision` (if any) and unstage `paths`.

        The working tree is left as it is; file contents are restored by the
        injector.
        """
        ...


@dataclass(frozen=True)
class TriggerReceipt:
    """Acknowledgement that the trigger fired."""

    revision: str
    triggered_at: datetime
    paths: tuple[str, ...] = ()


class FaultInjector:
    """Applies mutations atomically, commits them and fires the trigger."""

    def __init__(self, workspace: Workspace, clock: Clock | None = None):
        self._workspace = workspace
        self._clock = clock or SystemClock()

    def _resolve(self, rel: str) -> Path:
        """Map a mutation path into the workspace, refusing escapes."""
        root = Path(self._workspace.root).resolve()
        if not rel or Path(rel).is_absolute():
            raise InjectionError(f"mutation path must be relative: {rel!r}")
        target = (root / rel).resolve()
        if target != root and root not in target.parents:
            raise InjectionError(f"mutation path escapes workspace: {rel!r}")
        if target == root:
            raise InjectionError(f"mutation path is the workspace root: {rel!r}")
        return target

    def _apply(self, targets: list[tuple[Path, str]]) -> list[tuple[Path, bytes | None]]:
        """Write every file or none of them.

        Content is first written to temp files beside each target; only when
        all temp files exist are they moved into place. A failure while moving
        restores the originals. Returns each target with its prior content
        (None when the file did not exist).
        """
        staged: list[tuple[Path, Path]] = []
        replaced: list[tuple[Path, bytes | None]] = []
        try:
            for path, content in targets:
                path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                    fh.write(content)
                staged.append((Path(tmp), path))
            for tmp, path in staged:
                original = path.read_bytes() if path.exists() else None
                os.replace(tmp, path)
                replaced.append((path, original))
        except OSError as e:
            _restore(replaced)
            for tmp, _ in staged:
                tmp.unlink(missing_ok=True)
            raise InjectionError(f"could not write mutations: {e}") from e
        return replaced

    def _rollback(
        self,
        scenario: Scenario,
        paths: list[str],
        replaced: list[tuple[Path, bytes | None]],
        revision: str | None,
    ) -> None:
        """Return the workspace to its pre-injection state after a failed trigger."""
        try:
            self._workspace.discard(paths, revision)
        except Exception as e:
            logger.warning("[%s] could not discard %s: %s", scenario.id, revision or "staged mutations", e)
        try:
            _restore(replaced)
        except OSError as e:
            logger.warning("[%s] could not restore mutated files: %s", scenario.id, e)
        logger.debug("[%s] rolled back %d file(s)", scenario.id, len(replaced))

    def inject(self, scenario: Scenario, cancel: CancelToken | None = None) -> TriggerReceipt:
        """Write, commit and publish `scenario`'s mutations.

        When the commit or publish fails, or the run is cancelled before the
        trigger fires, the unpublished commit is dropped and the mutated files
        are restored before the error propagates.

        Raises:
            InjectionError: a write failed, a path is outside the workspace,
                or the commit/publish was rejected.
            Cancelled: cancelled before the trigger fired.
        """
        targets = [(self._resolve(m.path), m.content) for m in scenario.mutations]
        if not targets and not scenario.trigger.allow_empty:
            raise InjectionError(f"scenario {scenario.id} has nothing to inject")
        if cancel is not None:
            cancel.raise_if_cancelled()

        replaced = self._apply(targets)
        paths = [m.path for m in scenario.mutations]
        for m in scenario.mutations:
            logger.debug("[%s] wrote %s (%s)", scenario.id, m.path, m.intent or "mutation")

        revision: str | None = None
        try:
            revision = self._workspace.commit(
                paths, scenario.commit_message, allow_empty=scenario.trigger.allow_empty
            )
            if cancel is not None:
                cancel.raise_if_cancelled()
            triggered_at = self._clock.now()
            self._workspace.publish(scenario.trigger.branch)
        except Exception as e:
            self._rollback(scenario, paths, replaced, revision)
            if isinstance(e, PipelineChaosError):
                raise
            raise InjectionError(f"trigger failed: {e}") from e

        logger.info("[%s] published %s", scenario.id, revision[:12])
        return TriggerReceipt(revision=revision, triggered_at=triggered_at, paths=tuple(paths))


def _restore(replaced: list[tuple[Path, bytes | None]]) -> None:
    for path, original in reversed(replaced):
        if original is None:
            path.unlink(missing_ok=True)
        else:
            path.write_bytes(original)

"""Artifact collection: harvest evidence once the pipeline has converged.

Every declared artifact gets a slot in the bundle. A slot is never silently
dropped: missing or empty content is marked ABSENT and an unreachable source
is marked ERROR, so validation can tell "not checked" from "checked and empty".
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from pipeline_chaos.core.clock import Clock, SystemClock
from pipeline_chaos.errors import Cancelled, CollectionError
from pipeline_chaos.types import ArtifactStatus

if TYPE_CHECKING:
    from pipeline_chaos.core.context import RunContext
    from pipeline_chaos.core.recorder import Recorder
    from pipeline_chaos.scenario.model import ArtifactSpec

logger = logging.getLogger(__name__)


@runtime_checkable
class ArtifactSource(Protocol):
    """One retrieval call against an external system.

    Return None or an empty value when the artifact does not exist; raise
    CollectionError (or let a library error through) when the source is
    unreachable.
    """

    def fetch(self, spec: ArtifactSpec, ctx: RunContext) -> Any: ...


class ArtifactSlot(BaseModel):
    """One named artifact in a bundle."""

    model_config = ConfigDict(frozen=True)

    name: str
    source: str
    status: ArtifactStatus
    content: Any = None
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.status == ArtifactStatus.PRESENT

    @property
    def size(self) -> int | None:
        if self.content is None:
            return None
        if isinstance(self.content, str):
            return len(self.content)
        return len(json.dumps(self.content, default=str))


class ArtifactBundle(BaseModel):
    """Evidence gathered for one scenario run. Never modified after creation."""

    model_config = ConfigDict(frozen=True)

    scenario_id: str
    run_id: str = ""
    collected_at: datetime
    slots: dict[str, ArtifactSlot] = Field(default_factory=dict)

    def __getitem__(self, name: str) -> ArtifactSlot:
        return self.slots[name]

    def __contains__(self, name: object) -> bool:
        return name in self.slots

    def __len__(self) -> int:
        return len(self.slots)

    def content(self, name: str) -> Any:
        slot = self.slots.get(name)
        return slot.content if slot is not None and slot.available else None

    def unavailable(self) -> frozenset[str]:
        """Names of ABSENT or ERROR slots."""
        return frozenset(n for n, s in self.slots.items() if not s.available)

    def errors(self) -> dict[str, str]:
        return {n: s.error or "" for n, s in self.slots.items() if s.status == ArtifactStatus.ERROR}

    def render(self, max_chars: int = 4000) -> str:
        """Plain-text view for attaching to an agent query.

        Long artifacts keep their tail, where CI logs put the failure.
        """
        parts: list[str] = []
        for name, slot in self.slots.items():
            if not slot.available:
                parts.append(f"=== {name} ({slot.status.value}) ===")
                continue
            body = slot.content if isinstance(slot.content, str) else json.dumps(slot.content, indent=2, default=str)
            if len(body) > max_chars:
                body = "…" + body[-max_chars:]
            parts.append(f"=== {name} ===\n{body}")
        return "\n\n".join(parts)


def _is_empty(content: Any) -> bool:
    if content is None:
        return True
    if isinstance(content, (str, bytes)):
        return not content.strip()
    if isinstance(content, (list, tuple, dict, set)):
        return len(content) == 0
    return False


class ArtifactCollector:
    """Issues one retrieval per declared artifact and assembles a bundle.

    Args:
        sources: Source per name, from the environment's capabilities.
        clock: Time source for the collection timestamp.
        recorder: Optional recorder for per-artifact events.
    """

    def __init__(
        self,
        sources: Mapping[str, ArtifactSource],
        clock: Clock | None = None,
        recorder: Recorder | None = None,
    ):
        self._sources = dict(sources)
        self._clock = clock or SystemClock()
        self._recorder = recorder

    def _fetch_one(self, spec: ArtifactSpec, ctx: RunContext) -> ArtifactSlot:
        source = self._sources.get(spec.source)
        if source is None:
            return ArtifactSlot(
                name=spec.name,
                source=spec.source,
                status=ArtifactStatus.ERROR,
                error=f"CollectionError: no source named {spec.source!r}",
            )
        try:
            content = source.fetch(spec, ctx)
        except Cancelled:
            raise
        except Exception as e:
            # One unreachable source must not abort the whole collection.
            err = e if isinstance(e, CollectionError) else CollectionError(str(e), spec.name)
            return ArtifactSlot(
                name=spec.name,
                source=spec.source,
                status=ArtifactStatus.ERROR,
                error=f"{type(err).__name__}: {err}",
            )
        if isinstance(content, bytes):
            content = content.decode("utf-8", errors="replace")
        if _is_empty(content):
            return ArtifactSlot(name=spec.name, source=spec.source, status=ArtifactStatus.ABSENT)
        return ArtifactSlot(
            name=spec.name,
            source=spec.source,
            status=ArtifactStatus.PRESENT,
            content=content,
        )

    def collect(self, artifacts: list[ArtifactSpec] | tuple[ArtifactSpec, ...], ctx: RunContext) -> ArtifactBundle:
        slots: dict[str, ArtifactSlot] = {}
        for spec in artifacts:
            ctx.cancel.raise_if_cancelled()
            slot = self._fetch_one(spec, ctx)
            slots[spec.name] = slot
            if self._recorder is not None:
                self._recorder.artifact(slot)
        bundle = ArtifactBundle(
            scenario_id=ctx.scenario_id,
            run_id=ctx.run_id,
            collected_at=self._clock.now(),
            slots=slots,
        )
        logger.info(
            "[%s] collected %d/%d artifacts",
            ctx.scenario_id,
            len(slots) - len(bundle.unavailable()),
            len(slots),
        )
        return bundle

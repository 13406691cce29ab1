"""Result store: one directory per scenario per run, never overwritten.

Layout:
    <root>/runs.jsonl                               one summary line per run
    <root>/<scenario_id>/<run_id>/record.json       full RunRecord
    <root>/<scenario_id>/<run_id>/artifacts/<name>  raw artifact content
"""

from __future__ import annotations

import json
import re
import threading
from pathlib import Path

from pipeline_chaos.scenario.report import RunRecord

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe(name: str) -> str:
    cleaned = _UNSAFE.sub("_", name).strip("._")
    return cleaned or "_"


class ResultStore:
    """Append-only store of run records, keyed by scenario id.

    Safe for concurrent `append` from parallel scenario workers.
    """

    INDEX = "runs.jsonl"

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self.root / self.INDEX

    def run_dir(self, scenario_id: str, run_id: str) -> Path:
        return self.root / _safe(scenario_id) / _safe(run_id)

    def append(self, record: RunRecord) -> Path:
        """Persist `record`; returns the path of record.json.

        Raises:
            FileExistsError: a record for this (scenario, run) already exists.
        """
        run_dir = self.run_dir(record.scenario_id, record.run_id)
        payload = record.to_json()
        with self._lock:
            run_dir.parent.mkdir(parents=True, exist_ok=True)
            run_dir.mkdir(exist_ok=False)
            path = run_dir / "record.json"
            with path.open("x", encoding="utf-8") as fh:
                fh.write(payload)
            if record.bundle is not None:
                self._write_artifacts(run_dir / "artifacts", record)
            with self.index_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record.summary()) + "\n")
        return path

    @staticmethod
    def _write_artifacts(dest: Path, record: RunRecord) -> None:
        dest.mkdir()
        for name, slot in record.bundle.slots.items():
            if not slot.available:
                continue
            if isinstance(slot.content, str):
                (dest / f"{_safe(name)}.txt").write_text(slot.content, encoding="utf-8")
            else:
                (dest / f"{_safe(name)}.json").write_text(
                    json.dumps(slot.content, indent=2, default=str), encoding="utf-8"
                )

    def records(self, scenario_id: str) -> list[RunRecord]:
        """All runs of one scenario, oldest first."""
        base = self.root / _safe(scenario_id)
        if not base.is_dir():
            return []
        records = [
            RunRecord.model_validate_json(p.read_text(encoding="utf-8"))
            for p in base.glob("*/record.json")
        ]
        return sorted(records, key=lambda r: r.timestamps.started_at)

    def summaries(self) -> list[dict]:
        """Index lines in append order."""
        if not self.index_path.exists():
            return []
        with self.index_path.open(encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]

    def latest(self) -> dict[str, dict]:
        """Most recent summary per scenario id, in first-seen order."""
        latest: dict[str, dict] = {}
        for summary in self.summaries():
            latest[summary["scenario_id"]] = summary
        return latest

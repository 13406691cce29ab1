"""Scenario loader for CLI.

Supported refs:
- `path/to/file.py` (expects `scenarios`/`get_scenarios()` or `scenario`/`get_scenario()`)
- `package.module:attr` (attr is Scenario, list[Scenario] or a callable returning one)
- `path/to/catalog.yaml|.yml|.json` (a list of scenario mappings, or `{scenarios: [...]}`)
- directory path: loads every scenario file in it

Data-file scenarios look like:

    - id: "5.1"
      title: Terraform fmt failure
      query: terraform fmt -check is failing in CI
      mutations:
        - path: main.tf
          content: |
            resource "aws_s3_bucket" "b" {
            bucket = "x"
            }
      convergence:
        - system: pipeline
          query: {workflow: terraform.yml}
          terminal: {field: status, in: [completed]}
          timeout_s: 600
      artifacts: [pipeline-log]
      contract:
        - contains: terraform fmt
        - one_of: [formatting, format]
          required: false
"""

from __future__ import annotations

import importlib
import importlib.util
import json
import sys
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import ModuleType
from typing import Any

import yaml

from pipeline_chaos.scenario.contract import ExpectedResponseContract, contains, icontains, one_of, regex
from pipeline_chaos.scenario.model import (
    ArtifactMutation,
    ArtifactSpec,
    ConvergenceSpec,
    FieldIn,
    ManualPrecondition,
    NonEmpty,
    Scenario,
    Trigger,
)

DATA_SUFFIXES = (".yaml", ".yml", ".json")
_RULE_KINDS = {
    "contains": contains,
    "icontains": icontains,
    "regex": regex,
}


def _load_module_from_file(path: Path) -> ModuleType:
    """Load a scenario module from a file path via importlib.

    The module is registered in `sys.modules` before executing it, which
    `dataclasses.dataclass` relies on.
    """
    suffix = f"{abs(hash(str(path))) & 0xFFFFFFFF:x}"
    module_name = f"pipeline_chaos_scenario_{path.stem}_{suffix}"

    spec = importlib.util.spec_from_file_location(module_name, str(path))
    if spec is None or spec.loader is None:
        raise RuntimeError(f"Failed to create module spec for scenario: {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    spec.loader.exec_module(module)  # type: ignore[attr-defined]
    return module


def _coerce_scenarios(obj: Any) -> list[Scenario]:
    """Coerce an object into a list of Scenario."""
    if isinstance(obj, Scenario):
        return [obj]
    if isinstance(obj, (list, tuple)) and all(isinstance(s, Scenario) for s in obj):
        return list(obj)
    if callable(obj):
        v = obj()
        if isinstance(v, Scenario):
            return [v]
        if isinstance(v, (list, tuple)) and all(isinstance(s, Scenario) for s in v):
            return list(v)
    raise TypeError(
        "Scenario reference must resolve to `Scenario`, `list[Scenario]`, or a callable returning one of those"
    )


# ---------------------------------------------------------------------------
# Data files
# ---------------------------------------------------------------------------


def _terminal_from_dict(data: Any) -> Any:
    if not isinstance(data, Mapping):
        raise ValueError(f"terminal must be a mapping, got {data!r}")
    if data.get("non_empty"):
        return NonEmpty()
    if "field" in data and "in" in data:
        values = data["in"]
        if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
            values = [values]
        return FieldIn(str(data["field"]), tuple(values))
    raise ValueError(f"terminal needs `field` + `in` or `non_empty: true`, got {dict(data)!r}")


def _convergence_from_dict(data: Mapping[str, Any]) -> ConvergenceSpec:
    kwargs: dict[str, Any] = {
        "system": data["system"],
        "terminal": _terminal_from_dict(data.get("terminal", {"field": "status", "in": ["completed"]})),
        "query": dict(data.get("query") or {}),
        "name": data.get("name", ""),
    }
    for key in ("interval_s", "timeout_s"):
        if key in data:
            kwargs[key] = float(data[key])
    return ConvergenceSpec(**kwargs)


def _artifact_from_data(data: Any) -> ArtifactSpec:
    if isinstance(data, str):
        return ArtifactSpec(name=data, source=data)
    return ArtifactSpec(
        name=data["name"],
        source=data.get("source", data["name"]),
        params=dict(data.get("params") or {}),
    )


def _rule_from_dict(data: Mapping[str, Any]) -> Any:
    opts = {
        "required": bool(data.get("required", True)),
        "name": data.get("name", ""),
        "requires": tuple(data.get("requires") or ()),
    }
    if "one_of" in data:
        options = data["one_of"]
        if isinstance(options, str):
            options = [options]
        return one_of(*options, **opts)
    for key, factory in _RULE_KINDS.items():
        if key in data:
            if key == "regex" and "ignore_case" in data:
                opts["ignore_case"] = bool(data["ignore_case"])
            if key == "contains" and "case_sensitive" in data:
                opts["case_sensitive"] = bool(data["case_sensitive"])
            return factory(str(data[key]), **opts)
    raise ValueError(f"rule needs one of contains/icontains/regex/one_of, got {dict(data)!r}")


def _precondition_from_data(data: Any) -> ManualPrecondition:
    if isinstance(data, str):
        return ManualPrecondition(instructions=data)
    return ManualPrecondition(instructions=data["instructions"], name=data.get("name", "manual-step"))


def scenario_from_dict(data: Mapping[str, Any]) -> Scenario:
    """Build a Scenario from a plain mapping (one entry of a data file)."""
    missing = [k for k in ("id", "title", "query") if k not in data]
    if missing:
        raise ValueError(f"scenario {data.get('id', '?')!r} is missing {', '.join(missing)}")

    trigger = data.get("trigger") or {}
    return Scenario(
        id=str(data["id"]),
        title=str(data["title"]),
        query=str(data["query"]),
        mutations=tuple(
            ArtifactMutation(path=m["path"], content=m["content"], intent=m.get("intent", ""))
            for m in data.get("mutations") or ()
        ),
        trigger=Trigger(
            message=trigger.get("message"),
            branch=trigger.get("branch"),
            allow_empty=bool(trigger.get("allow_empty", False)),
        ),
        convergence=tuple(_convergence_from_dict(c) for c in data.get("convergence") or ()),
        artifacts=tuple(_artifact_from_data(a) for a in data.get("artifacts") or ()),
        contract=ExpectedResponseContract(rules=tuple(_rule_from_dict(r) for r in data.get("contract") or ())),
        environment=str(data.get("environment", "default")),
        preconditions=tuple(_precondition_from_data(p) for p in data.get("preconditions") or ()),
        description=str(data.get("description", "")),
        reminder=data.get("reminder"),
        attach_artifacts=bool(data.get("attach_artifacts", False)),
        tags=tuple(data.get("tags") or ()),
        meta=dict(data.get("meta") or {}),
    )


def load_data_file(path: str | Path) -> list[Scenario]:
    """Load scenarios from a YAML or JSON data file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
    if isinstance(data, Mapping):
        data = data.get("scenarios", [data] if "id" in data else None)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of scenarios")
    return [scenario_from_dict(item) for item in data]


# ---------------------------------------------------------------------------
# Refs
# ---------------------------------------------------------------------------


def load_target(ref: str) -> list[Scenario]:
    """Load one or more scenarios from a ref."""
    # module:attr form
    if ":" in ref and not ref.strip().endswith(".py") and not Path(ref).exists():
        mod_name, attr = ref.split(":", 1)
        module = importlib.import_module(mod_name)
        return _coerce_scenarios(getattr(module, attr))

    path = Path(ref)
    if not path.exists():
        raise FileNotFoundError(ref)
    if path.is_dir():
        return load_scenarios_from_dir(path)
    if path.suffix in DATA_SUFFIXES:
        return load_data_file(path)

    module = _load_module_from_file(path.resolve())
    for attr in ("scenarios", "get_scenarios", "scenario", "get_scenario"):
        if hasattr(module, attr):
            return _coerce_scenarios(getattr(module, attr))

    raise AttributeError(
        f"{ref} must define `scenario`, `get_scenario()`, `scenarios`, or `get_scenarios()`"
    )


def load_scenarios_from_dir(dir_path: str | Path, *, recursive: bool = False) -> list[Scenario]:
    """Discover and load every scenario file (python or data) in a directory."""
    base = Path(dir_path)
    if not base.is_dir():
        raise NotADirectoryError(str(dir_path))

    files = base.rglob("*") if recursive else base.glob("*")
    scenarios: list[Scenario] = []
    for path in sorted(files):
        if not path.is_file() or path.name.startswith("_"):
            continue
        if path.suffix == ".py" or path.suffix in DATA_SUFFIXES:
            scenarios.extend(load_target(str(path)))

    if not scenarios:
        raise FileNotFoundError(f"No scenarios found in {base}")
    return scenarios


def _check_unique(scenarios: list[Scenario]) -> list[Scenario]:
    seen: set[str] = set()
    dupes: list[str] = []
    for s in scenarios:
        if s.id in seen:
            dupes.append(s.id)
        seen.add(s.id)
    if dupes:
        raise ValueError(f"duplicate scenario ids: {', '.join(sorted(set(dupes)))}")
    return scenarios


def load_scenarios(targets: list[str] | None = None) -> list[Scenario]:
    """Load every target, or the built-in catalog when none are given."""
    if not targets:
        from pipeline_chaos.scenario.catalog import get_scenarios

        return _check_unique(get_scenarios())
    scenarios: list[Scenario] = []
    for ref in targets:
        scenarios.extend(load_target(ref))
    return _check_unique(scenarios)


def select(scenarios: list[Scenario], ids: Iterable[str] | None) -> list[Scenario]:
    """Keep only `ids`, in catalog order.

    Raises:
        KeyError: an id is not in the catalog.
    """
    if not ids:
        return list(scenarios)
    wanted = list(dict.fromkeys(ids))
    known = {s.id for s in scenarios}
    unknown = [i for i in wanted if i not in known]
    if unknown:
        raise KeyError(f"unknown scenario id(s): {', '.join(unknown)}")
    return [s for s in scenarios if s.id in wanted]

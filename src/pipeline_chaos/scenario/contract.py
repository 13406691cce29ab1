"""Expected-response contracts.

A contract is an ordered set of match rules evaluated against the agent's
free-text answer. Rules are any object with `name`, `required`, `requires`
and `evaluate(text) -> RuleResult`; the built-in kinds are:

    contains("Install dependencies")            # substring, any case
    contains("ENOENT", case_sensitive=True)     # exact-case substring
    icontains("install dependencies")           # case-insensitive substring
    regex(r"express@\\^?4\\.\\d+")              # regular expression (IGNORECASE)
    one_of("does not exist", "no matching version")

Text is normalized (NFKC, straight quotes, collapsed whitespace) before any
rule sees it. Satisfaction is binary per rule. `requires` names the artifacts
a rule's claim depends on: if any of them is absent from the bundle, the rule
cannot match regardless of the response text.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field, replace
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

_WS = re.compile(r"\s+")
_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})


def normalize_text(text: str) -> str:
    """NFKC-normalize, straighten quotes and collapse whitespace."""
    text = unicodedata.normalize("NFKC", text).translate(_QUOTES)
    return _WS.sub(" ", text).strip()


def fold(text: str) -> str:
    return normalize_text(text).casefold()


class RuleResult(BaseModel):
    """Outcome of one rule against one response."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str
    required: bool
    matched: bool
    rationale: str = ""
    evidence: str | None = None
    missing_artifacts: tuple[str, ...] = ()


@runtime_checkable
class MatchRule(Protocol):
    """Protocol for contract rules."""

    name: str
    required: bool
    requires: tuple[str, ...]

    def evaluate(self, text: str) -> RuleResult: ...


def _excerpt(text: str, start: int, end: int, pad: int = 30) -> str:
    lo, hi = max(start - pad, 0), min(end + pad, len(text))
    return ("…" if lo else "") + text[lo:hi] + ("…" if hi < len(text) else "")


@dataclass(frozen=True)
class _Rule:
    required: bool = True
    name: str = ""
    requires: tuple[str, ...] = ()
    kind: str = field(default="rule", init=False)

    def _result(self, matched: bool, rationale: str, evidence: str | None = None) -> RuleResult:
        return RuleResult(
            name=self.name,
            kind=self.kind,
            required=self.required,
            matched=matched,
            rationale=rationale,
            evidence=evidence,
        )


@dataclass(frozen=True)
class Contains(_Rule):
    """Substring presence, case-folded unless `case_sensitive` is set."""

    needle: str = ""
    case_sensitive: bool = False
    kind: str = field(default="contains", init=False)

    def __post_init__(self) -> None:
        if not self.needle:
            raise ValueError("contains rule needs a non-empty needle")
        if not self.name:
            object.__setattr__(self, "name", f"contains:{self.needle}")

    def evaluate(self, text: str) -> RuleResult:
        plain = normalize_text(text)
        if self.case_sensitive:
            needle = normalize_text(self.needle)
            idx = plain.find(needle)
        else:
            needle = fold(self.needle)
            idx = plain.casefold().find(needle)
        if idx < 0:
            return self._result(False, f"{self.needle!r} not mentioned")
        return self._result(True, f"mentions {self.needle!r}", _excerpt(plain, idx, idx + len(needle)))


@dataclass(frozen=True)
class ContainsIgnoreCase(_Rule):
    """Case-insensitive substring presence."""

    needle: str = ""
    kind: str = field(default="icontains", init=False)

    def __post_init__(self) -> None:
        if not self.needle:
            raise ValueError("icontains rule needs a non-empty needle")
        if not self.name:
            object.__setattr__(self, "name", f"icontains:{self.needle}")

    def evaluate(self, text: str) -> RuleResult:
        plain = normalize_text(text)
        idx = plain.casefold().find(fold(self.needle))
        if idx < 0:
            return self._result(False, f"{self.needle!r} not mentioned (any case)")
        return self._result(
            True, f"mentions {self.needle!r}", _excerpt(plain, idx, idx + len(self.needle))
        )


@dataclass(frozen=True)
class Matches(_Rule):
    """Regular-expression search, case-insensitive by default."""

    pattern: str = ""
    ignore_case: bool = True
    kind: str = field(default="regex", init=False)

    def __post_init__(self) -> None:
        if not self.pattern:
            raise ValueError("regex rule needs a pattern")
        # Compile eagerly so a bad pattern fails at catalog load, not mid-run.
        re.compile(self.pattern)
        if not self.name:
            object.__setattr__(self, "name", f"regex:{self.pattern}")

    def evaluate(self, text: str) -> RuleResult:
        flags = re.IGNORECASE if self.ignore_case else 0
        plain = normalize_text(text)
        m = re.search(self.pattern, plain, flags)
        if m is None:
            return self._result(False, f"/{self.pattern}/ did not match")
        return self._result(True, f"/{self.pattern}/ matched", _excerpt(plain, m.start(), m.end()))


@dataclass(frozen=True)
class OneOf(_Rule):
    """Satisfied when any acceptable phrasing appears (case-insensitive)."""

    options: tuple[str, ...] = ()
    kind: str = field(default="one_of", init=False)

    def __post_init__(self) -> None:
        options = tuple(o for o in self.options if o)
        if not options:
            raise ValueError("one_of rule needs at least one option")
        object.__setattr__(self, "options", options)
        if not self.name:
            object.__setattr__(self, "name", "one_of:" + "|".join(options))

    def evaluate(self, text: str) -> RuleResult:
        plain = normalize_text(text)
        folded = plain.casefold()
        for option in self.options:
            idx = folded.find(fold(option))
            if idx >= 0:
                return self._result(
                    True, f"mentions {option!r}", _excerpt(plain, idx, idx + len(option))
                )
        return self._result(False, "none of " + ", ".join(repr(o) for o in self.options))


def contains(
    needle: str,
    *,
    required: bool = True,
    name: str = "",
    requires: tuple[str, ...] = (),
    case_sensitive: bool = False,
) -> Contains:
    return Contains(
        needle=needle, required=required, name=name, requires=tuple(requires), case_sensitive=case_sensitive
    )


def icontains(needle: str, *, required: bool = True, name: str = "", requires: tuple[str, ...] = ()) -> ContainsIgnoreCase:
    return ContainsIgnoreCase(needle=needle, required=required, name=name, requires=tuple(requires))


def regex(
    pattern: str,
    *,
    required: bool = True,
    name: str = "",
    requires: tuple[str, ...] = (),
    ignore_case: bool = True,
) -> Matches:
    return Matches(
        pattern=pattern,
        required=required,
        name=name,
        requires=tuple(requires),
        ignore_case=ignore_case,
    )


def one_of(*options: str, required: bool = True, name: str = "", requires: tuple[str, ...] = ()) -> OneOf:
    return OneOf(options=tuple(options), required=required, name=name, requires=tuple(requires))


def advisory(rule: Any) -> Any:
    """Return a copy of `rule` that does not affect pass/fail."""
    return replace(rule, required=False)


@dataclass(frozen=True)
class ExpectedResponseContract:
    """Ordered set of match rules for one scenario."""

    rules: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        rules = tuple(self.rules)
        for rule in rules:
            if not isinstance(rule, MatchRule):
                raise TypeError(f"{rule!r} is not a match rule")
        names = [r.name for r in rules]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate rule names: {', '.join(dupes)}")
        object.__setattr__(self, "rules", rules)

    @property
    def required_rules(self) -> tuple[Any, ...]:
        return tuple(r for r in self.rules if r.required)

    @property
    def advisory_rules(self) -> tuple[Any, ...]:
        return tuple(r for r in self.rules if not r.required)

    @property
    def required_artifacts(self) -> frozenset[str]:
        """Artifacts that at least one required rule depends on."""
        return frozenset(a for r in self.required_rules for a in r.requires)

    def __len__(self) -> int:
        return len(self.rules)

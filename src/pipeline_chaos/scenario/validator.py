"""Response validation: score an agent's answer against a contract."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pipeline_chaos.errors import ValidatorInputError
from pipeline_chaos.scenario.contract import ExpectedResponseContract, RuleResult
from pipeline_chaos.types import Verdict

if TYPE_CHECKING:
    from pipeline_chaos.core.collector import ArtifactBundle


@dataclass(frozen=True)
class ValidationResult:
    verdict: Verdict
    rule_results: tuple[RuleResult, ...]
    advisory_ratio: float | None

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS

    @property
    def unmatched_required(self) -> tuple[RuleResult, ...]:
        return tuple(r for r in self.rule_results if r.required and not r.matched)

    def summary(self) -> str:
        required = [r for r in self.rule_results if r.required]
        matched = sum(1 for r in required if r.matched)
        text = f"{self.verdict.value}: {matched}/{len(required)} required rules"
        if self.advisory_ratio is not None:
            text += f", advisory {self.advisory_ratio:.0%}"
        return text


class ResponseValidator:
    """Evaluates every rule independently; deterministic for built-in rules.

    A rule whose `requires` names an artifact that is absent (or errored) in
    the bundle is unmatched regardless of the text: the agent cannot be
    credited for evidence the harness never saw.
    """

    def _evaluate(self, rule: Any, text: str, unavailable: frozenset[str]) -> RuleResult:
        missing = tuple(a for a in rule.requires if a in unavailable)
        if missing:
            return RuleResult(
                name=rule.name,
                kind=getattr(rule, "kind", type(rule).__name__),
                required=rule.required,
                matched=False,
                rationale="evidence unavailable: " + ", ".join(missing),
                missing_artifacts=missing,
            )
        try:
            result = rule.evaluate(text)
        except Exception as e:
            return RuleResult(
                name=rule.name,
                kind=getattr(rule, "kind", type(rule).__name__),
                required=rule.required,
                matched=False,
                rationale=f"rule raised: {type(e).__name__}: {e}",
            )
        if not isinstance(result, RuleResult):
            return RuleResult(
                name=rule.name,
                kind=getattr(rule, "kind", type(rule).__name__),
                required=rule.required,
                matched=False,
                rationale=f"rule must return RuleResult, got {type(result).__name__}",
            )
        return result

    def validate(
        self,
        response: Any,
        contract: ExpectedResponseContract,
        bundle: ArtifactBundle | None = None,
    ) -> ValidationResult:
        """Score `response`.

        Raises:
            ValidatorInputError: response is not text or is blank.
        """
        if not isinstance(response, str):
            raise ValidatorInputError(f"agent response must be text, got {type(response).__name__}")
        if not response.strip():
            raise ValidatorInputError("agent response is empty")

        unavailable: frozenset[str] = frozenset()
        if bundle is not None:
            declared = {a for r in contract.rules for a in r.requires}
            unavailable = bundle.unavailable() | frozenset(a for a in declared if a not in bundle)

        results = tuple(self._evaluate(rule, response, unavailable) for rule in contract.rules)

        required = [r for r in results if r.required]
        advisory = [r for r in results if not r.required]
        verdict = Verdict.PASS if all(r.matched for r in required) else Verdict.FAIL
        ratio = sum(1 for r in advisory if r.matched) / len(advisory) if advisory else None
        return ValidationResult(verdict=verdict, rule_results=results, advisory_ratio=ratio)

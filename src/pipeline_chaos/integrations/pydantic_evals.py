"""Pydantic Evals integration for pipeline-chaos.

Wrap pydantic-evals evaluators (especially LLMJudge) as contract rules, so an
LLM can grade how well the agent explained a failure alongside the
deterministic substring rules.

Usage:
    from pipeline_chaos.integrations.pydantic_evals import judge
    from pydantic_evals.evaluators import LLMJudge

    contract = ExpectedResponseContract(rules=(
        contains("99.99.99"),
        judge(
            LLMJudge(
                rubric="Explains that express@^99.99.99 does not exist and suggests a real 4.x version",
                model="anthropic:claude-sonnet-4-5",
                include_input=True,
            ),
            question="npm install is failing in my GitHub Actions workflow",
            threshold=0.7,
        ),
    ))

Judge rules are advisory unless `required=True` is passed: an LLM verdict is
not reproducible run to run.

Requirements:
    pip install pydantic-evals  # Optional dependency
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pipeline_chaos.scenario.contract import RuleResult

_PYDANTIC_EVALS_AVAILABLE: bool | None = None


def _check_pydantic_evals() -> None:
    """Check if pydantic-evals is available, raise helpful error if not."""
    global _PYDANTIC_EVALS_AVAILABLE
    if _PYDANTIC_EVALS_AVAILABLE is None:
        try:
            import pydantic_evals  # noqa: F401

            _PYDANTIC_EVALS_AVAILABLE = True
        except ImportError:
            _PYDANTIC_EVALS_AVAILABLE = False

    if not _PYDANTIC_EVALS_AVAILABLE:
        raise ImportError(
            "Judge rules require the 'pydantic-evals' package.\n"
            "Install it with: pip install 'pipeline-chaos[evals]'"
        )


def build_evaluator_context(
    name: str,
    question: str,
    response: str,
    expected_output: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Any:
    """Build a pydantic-evals EvaluatorContext for one agent answer.

    Returns:
        pydantic_evals.evaluators.context.EvaluatorContext
    """
    _check_pydantic_evals()
    from pydantic_evals.evaluators.context import EvaluatorContext
    from pydantic_evals.otel._errors import SpanTreeRecordingError

    return EvaluatorContext(
        name=name,
        inputs=question,
        metadata=metadata or None,
        expected_output=expected_output,
        output=response,
        duration=0.0,
        _span_tree=SpanTreeRecordingError("Span recording not available in pipeline-chaos"),
        attributes={},
        metrics={},
    )


def _parse_evaluator_output(
    output: Any,
    threshold: float | None,
    evaluator_name: str,
) -> tuple[bool, float | None, str]:
    """Parse pydantic-evals evaluator output into (passed, score, message)."""
    _check_pydantic_evals()
    from pydantic_evals.evaluators.evaluator import EvaluationReason

    if isinstance(output, bool):
        return output, None, f"{evaluator_name}: {'passed' if output else 'failed'}"

    if isinstance(output, (int, float)):
        score = float(output)
        cutoff = threshold if threshold is not None else 0.5
        return score >= cutoff, score, f"score={score:.2f} (threshold={cutoff:.2f})"

    if isinstance(output, EvaluationReason):
        value = output.value
        reason = output.reason or ""
        if isinstance(value, bool):
            return value, None, reason or f"{evaluator_name}: {'passed' if value else 'failed'}"
        if isinstance(value, (int, float)):
            score = float(value)
            cutoff = threshold if threshold is not None else 0.5
            return score >= cutoff, score, reason or f"score={score:.2f} (threshold={cutoff:.2f})"
        return False, None, reason or f"unscored result {value!r}"

    if isinstance(output, dict):
        all_passed = bool(output)
        scores = []
        messages = []
        for key, val in output.items():
            sub_passed, sub_score, sub_msg = _parse_evaluator_output(val, threshold, key)
            all_passed = all_passed and sub_passed
            if sub_score is not None:
                scores.append(sub_score)
            messages.append(f"{key}: {sub_msg}")
        avg_score = sum(scores) / len(scores) if scores else None
        return all_passed, avg_score, "; ".join(messages)

    # Strings and anything else carry no verdict.
    return False, None, f"unscored result {output!r}"


@dataclass(frozen=True)
class JudgeRule:
    """A contract rule backed by a pydantic-evals Evaluator.

    Args:
        evaluator: Any pydantic-evals Evaluator (e.g., LLMJudge).
        question: The query put to the agent, passed as the evaluator input.
        threshold: Score threshold for score-based evaluators (default 0.5).
        expected_output: Optional reference answer for comparison evaluators.
        required: Whether the rule gates the verdict. Advisory by default.
        name: Rule name; derived from the evaluator when empty.
        requires: Artifacts the judged claim depends on.
    """

    evaluator: Any
    question: str = ""
    threshold: float | None = None
    expected_output: str | None = None
    required: bool = False
    name: str = ""
    requires: tuple[str, ...] = ()
    kind: str = field(default="judge", init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "requires", tuple(self.requires))
        if not self.name:
            object.__setattr__(self, "name", self._default_name())

    def _default_name(self) -> str:
        get_name = getattr(self.evaluator, "get_serialization_name", None)
        if callable(get_name):
            try:
                return f"judge:{get_name()}"
            except Exception:
                pass
        return f"judge:{type(self.evaluator).__name__}"

    def evaluate(self, text: str) -> RuleResult:
        try:
            ctx = build_evaluator_context(
                self.name,
                self.question,
                text,
                expected_output=self.expected_output,
            )
            output = self.evaluator.evaluate_sync(ctx)
            passed, score, message = _parse_evaluator_output(output, self.threshold, self.name)
        except Exception as e:
            return RuleResult(
                name=self.name,
                kind=self.kind,
                required=self.required,
                matched=False,
                rationale=f"evaluator failed: {type(e).__name__}: {e}",
            )
        return RuleResult(
            name=self.name,
            kind=self.kind,
            required=self.required,
            matched=passed,
            rationale=message,
            evidence=f"score={score:.2f}" if score is not None else None,
        )


def judge(
    evaluator: Any,
    *,
    question: str = "",
    threshold: float | None = None,
    expected_output: str | None = None,
    required: bool = False,
    name: str = "",
    requires: tuple[str, ...] = (),
) -> JudgeRule:
    """Wrap any pydantic-evals Evaluator as a contract rule."""
    _check_pydantic_evals()
    return JudgeRule(
        evaluator=evaluator,
        question=question,
        threshold=threshold,
        expected_output=expected_output,
        required=required,
        name=name,
        requires=requires,
    )

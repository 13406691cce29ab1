"""Tests for integrations/pydantic_evals.py - judge rules backed by pydantic-evals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

pytest.importorskip("pydantic_evals")

from pydantic_evals.evaluators.evaluator import EvaluationReason  # noqa: E402

from pipeline_chaos.integrations.pydantic_evals import (  # noqa: E402
    JudgeRule,
    _parse_evaluator_output,
    build_evaluator_context,
    judge,
)
from pipeline_chaos.scenario.contract import ExpectedResponseContract, contains  # noqa: E402
from pipeline_chaos.scenario.validator import ResponseValidator  # noqa: E402
from pipeline_chaos.types import Verdict  # noqa: E402

# =============================================================================
# Mock evaluators
# =============================================================================


@dataclass
class MockBoolEvaluator:
    """Mock evaluator that returns a boolean."""

    result: bool = True
    seen: list[Any] = field(default_factory=list)

    def evaluate_sync(self, ctx: Any) -> bool:
        self.seen.append(ctx)
        return self.result


@dataclass
class MockScoreEvaluator:
    """Mock evaluator that returns a score."""

    score: float = 0.8

    def evaluate_sync(self, ctx: Any) -> float:
        return self.score


@dataclass
class MockReasonEvaluator:
    """Mock evaluator that returns an EvaluationReason."""

    value: Any = True
    reason: str | None = "Names the bad version"

    def evaluate_sync(self, ctx: Any) -> Any:
        return EvaluationReason(value=self.value, reason=self.reason)


@dataclass
class MockFailingEvaluator:
    """Mock evaluator that raises."""

    def evaluate_sync(self, ctx: Any) -> bool:
        raise RuntimeError("model unavailable")


class NamedEvaluator(MockBoolEvaluator):
    @classmethod
    def get_serialization_name(cls) -> str:
        return "LLMJudge"


# =============================================================================
# build_evaluator_context
# =============================================================================


class TestBuildEvaluatorContext:
    def test_fields(self) -> None:
        ctx = build_evaluator_context(
            "judge:x",
            "npm install is failing",
            "express@99.99.99 does not exist",
            expected_output="pin express@^4",
        )
        assert ctx.name == "judge:x"
        assert ctx.inputs == "npm install is failing"
        assert ctx.output == "express@99.99.99 does not exist"
        assert ctx.expected_output == "pin express@^4"
        assert ctx.metadata is None


# =============================================================================
# _parse_evaluator_output
# =============================================================================


class TestParseEvaluatorOutput:
    @pytest.mark.parametrize("value", [True, False])
    def test_bool(self, value: bool) -> None:
        passed, score, _ = _parse_evaluator_output(value, None, "judge")
        assert passed is value
        assert score is None

    @pytest.mark.parametrize("score, threshold, expected", [(0.8, None, True), (0.4, None, False), (0.8, 0.9, False)])
    def test_score(self, score: float, threshold: float | None, expected: bool) -> None:
        passed, parsed, message = _parse_evaluator_output(score, threshold, "judge")
        assert passed is expected
        assert parsed == score
        assert "score=" in message

    def test_reason_keeps_explanation(self) -> None:
        passed, score, message = _parse_evaluator_output(EvaluationReason(value=0.9, reason="Almost perfect"), 0.7, "j")
        assert passed
        assert score == 0.9
        assert message == "Almost perfect"

    def test_dict_requires_every_entry(self) -> None:
        passed, score, message = _parse_evaluator_output({"accuracy": 0.9, "cites_log": False}, None, "j")
        assert not passed
        assert score == 0.9
        assert "cites_log" in message

    def test_empty_dict_fails(self) -> None:
        assert _parse_evaluator_output({}, None, "j")[0] is False

    def test_string_is_unscored(self) -> None:
        passed, score, message = _parse_evaluator_output("great answer", None, "j")
        assert not passed
        assert score is None
        assert "unscored" in message


# =============================================================================
# JudgeRule
# =============================================================================


class TestJudgeRule:
    def test_advisory_by_default(self) -> None:
        rule = judge(MockBoolEvaluator(), question="why?")
        assert isinstance(rule, JudgeRule)
        assert not rule.required
        assert rule.kind == "judge"

    def test_default_names(self) -> None:
        assert judge(MockBoolEvaluator()).name == "judge:MockBoolEvaluator"
        assert judge(NamedEvaluator()).name == "judge:LLMJudge"
        assert judge(MockBoolEvaluator(), name="explains-fix").name == "explains-fix"

    def test_passes_question_and_answer(self) -> None:
        evaluator = MockBoolEvaluator()
        result = judge(evaluator, question="npm install is failing").evaluate("express@99.99.99 does not exist")
        assert result.matched
        (ctx,) = evaluator.seen
        assert ctx.inputs == "npm install is failing"
        assert ctx.output == "express@99.99.99 does not exist"

    def test_score_evidence(self) -> None:
        result = judge(MockScoreEvaluator(0.75), threshold=0.7).evaluate("answer")
        assert result.matched
        assert result.evidence == "score=0.75"

    def test_reason(self) -> None:
        result = judge(MockReasonEvaluator(value=False, reason="Misses the failing step")).evaluate("answer")
        assert not result.matched
        assert result.rationale == "Misses the failing step"

    def test_evaluator_failure_is_unmatched(self) -> None:
        result = judge(MockFailingEvaluator(), required=True).evaluate("answer")
        assert not result.matched
        assert result.required
        assert "model unavailable" in result.rationale

    def test_in_contract(self) -> None:
        contract = ExpectedResponseContract(
            rules=(contains("99.99.99"), judge(MockScoreEvaluator(0.2), name="explains-fix"))
        )
        result = ResponseValidator().validate("express@99.99.99 is not published", contract)
        assert result.verdict == Verdict.PASS
        assert result.advisory_ratio == 0.0

    def test_required_judge_gates_verdict(self) -> None:
        contract = ExpectedResponseContract(rules=(judge(MockBoolEvaluator(False), required=True),))
        assert ResponseValidator().validate("answer", contract).verdict == Verdict.FAIL

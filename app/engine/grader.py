# app/engine/grader.py

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from app.engine.policy import EffectivePolicy
from app.schemas.answers import (
    ChoiceAnswer,
    MultiChoiceAnswer,
    NumberAnswer,
    RatingAnswer,
    TextAnswer,
)
from app.schemas.template import CLOSED_FORM_KINDS, QuestionKind, TemplateQuestion

logger = logging.getLogger(__name__)


@dataclass
class GradingResult:
    """Outcome of one auto-grading pass over a submitted attempt."""
    applicable: bool
    auto_gradable_count: int = 0
    earned: float = 0.0
    total: float = 0.0
    score_pct: Optional[int] = None
    passed: Optional[bool] = None
    by_question: List[Dict[str, Any]] = field(default_factory=list)
    engine_version: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "applicable": self.applicable,
            "auto_gradable_count": self.auto_gradable_count,
            "earned": self.earned,
            "total": self.total,
            "score_pct": self.score_pct,
            "passed": self.passed,
            "by_question": list(self.by_question),
            "engine_version": self.engine_version,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class AutoGrader:
    """
    PURE RULE-BASED GRADER for closed-form questions.

    Deterministic and binary per question:
    - Correct = full weight
    - Incorrect or unanswered = zero
    - No partial credit

    Free-text questions (short_text, long_text) are never graded here; they
    stay out of the denominator and await manual grading.
    """

    ENGINE_VERSION = "rules_v1"

    def has_canonical_answer(self, question: TemplateQuestion) -> bool:
        key = question.correct_answer
        if question.kind == QuestionKind.SINGLE_CHOICE:
            return key is not None and key != ""
        if question.kind == QuestionKind.MULTI_CHOICE:
            return isinstance(key, list) and len(key) > 0
        if question.kind in (QuestionKind.NUMERIC, QuestionKind.RATING):
            return _is_number(key)
        return False

    def is_auto_gradable(self, question: TemplateQuestion) -> bool:
        return (
            question.kind in CLOSED_FORM_KINDS
            and question.points > 0
            and self.has_canonical_answer(question)
        )

    def score_single_choice(self, answer: Any, correct_answer: Any) -> bool:
        if not isinstance(answer, ChoiceAnswer):
            return False
        return answer.value == correct_answer

    def score_multi_choice(self, answer: Any, correct_answer: Sequence[Any]) -> bool:
        """Order-independent: equal length and every element present in both."""
        if not isinstance(answer, MultiChoiceAnswer):
            return False
        got = list(answer.values)
        expected = list(correct_answer)
        return len(got) == len(expected) and set(got) == set(expected)

    def score_numeric(self, answer: Any, correct_answer: Any) -> bool:
        if not isinstance(answer, (NumberAnswer, RatingAnswer)):
            return False
        return float(answer.value) == float(correct_answer)

    def score_question(self, question: TemplateQuestion, answer: Any) -> bool:
        if answer is None or isinstance(answer, TextAnswer):
            return False

        if question.kind == QuestionKind.SINGLE_CHOICE:
            return self.score_single_choice(answer, question.correct_answer)
        if question.kind == QuestionKind.MULTI_CHOICE:
            return self.score_multi_choice(answer, question.correct_answer)
        if question.kind in (QuestionKind.NUMERIC, QuestionKind.RATING):
            return self.score_numeric(answer, question.correct_answer)
        return False

    def grade(
        self,
        questions: Sequence[TemplateQuestion],
        answers: Mapping[str, Any],
        policy: EffectivePolicy,
    ) -> GradingResult:
        if not policy.auto_grade:
            return GradingResult(applicable=False, engine_version=self.ENGINE_VERSION)

        result = GradingResult(applicable=True, engine_version=self.ENGINE_VERSION)

        for q in questions:
            if not self.is_auto_gradable(q):
                continue

            correct = self.score_question(q, answers.get(q.id))
            earned = q.points if correct else 0.0

            result.auto_gradable_count += 1
            result.total += q.points
            result.earned += earned
            result.by_question.append({
                "id": q.id,
                "points": q.points,
                "earned": earned,
                "correct": correct,
            })

        # Nothing gradable: score is pending, never zero
        if result.total <= 0:
            return result

        result.score_pct = round_half_up(100 * result.earned / result.total)
        result.passed = result.score_pct >= policy.pass_mark_pct

        logger.debug(
            "Auto-graded %d questions: %s/%s (%s%%)",
            result.auto_gradable_count, result.earned, result.total, result.score_pct,
        )
        return result


auto_grader = AutoGrader()

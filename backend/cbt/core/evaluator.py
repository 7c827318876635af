"""
Question evaluator.

Pure scoring of a single submitted answer against a question definition.
Only closed, auto-gradable rules exist: single-correct multiple choice and
true/false. Every other question type raises ``RequiresManualGrading`` so it
can never be scored silently as zero.

No partial credit: a correct answer earns the question's points, anything
else earns 0. Empty submissions are incorrect.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union

from cbt.core.catalog import QuestionDefinition
from cbt.core.exceptions import RequiresManualGrading
from cbt.models import QuestionType


@dataclass(frozen=True)
class Evaluation:
    is_correct: bool
    points_awarded: int


@dataclass(frozen=True)
class MultipleChoiceRule:
    """Correct iff the submitted value is the id of the option flagged correct."""

    correct_option_id: Optional[str]
    points: int

    def is_correct(self, submitted: str) -> bool:
        return self.correct_option_id is not None and submitted == self.correct_option_id


@dataclass(frozen=True)
class TrueFalseRule:
    """Correct iff the trimmed, case-folded value matches the stored boolean."""

    correct_value: str
    points: int

    def is_correct(self, submitted: str) -> bool:
        return submitted.strip().lower() == self.correct_value


ScoringRule = Union[MultipleChoiceRule, TrueFalseRule]


def scoring_rule_for(question: QuestionDefinition) -> ScoringRule:
    """Build the scoring rule for a question.

    Raises:
        RequiresManualGrading: For short answer, essay and fill-in-the-blank.
    """
    if question.question_type == QuestionType.MULTIPLE_CHOICE:
        correct = [option.id for option in question.options if option.is_correct]
        return MultipleChoiceRule(
            correct_option_id=correct[0] if correct else None,
            points=question.points,
        )
    if question.question_type == QuestionType.TRUE_FALSE:
        return TrueFalseRule(
            correct_value=(question.correct_answer or "").strip().lower(),
            points=question.points,
        )
    raise RequiresManualGrading(question.id, question.question_type.value)


def _normalize(submitted_value: Any) -> Optional[str]:
    if submitted_value is None:
        return None
    if isinstance(submitted_value, bool):
        return "true" if submitted_value else "false"
    text = str(submitted_value)
    return text if text.strip() else None


def evaluate(question: QuestionDefinition, submitted_value: Any) -> Evaluation:
    """Score one submitted answer.

    Args:
        question: The question definition from the question bank.
        submitted_value: The raw client value (option id, "true"/"false", ...).

    Returns:
        Evaluation with correctness and awarded points.

    Raises:
        RequiresManualGrading: If the question type cannot be auto-scored.
    """
    rule = scoring_rule_for(question)
    submitted = _normalize(submitted_value)
    if submitted is None:
        return Evaluation(is_correct=False, points_awarded=0)

    correct = rule.is_correct(submitted)
    return Evaluation(is_correct=correct, points_awarded=rule.points if correct else 0)

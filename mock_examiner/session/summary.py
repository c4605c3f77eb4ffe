"""
Summary calculator.

Pure aggregation of an exam's feedback into a score, a percentage, a
letter grade and a histogram of repeated weaknesses.
"""

from typing import Mapping, Sequence

from mock_examiner.grading.evaluator import round_half_up
from mock_examiner.models import ExamSummary, Feedback, Question, WeaknessCount

# (minimum percentage, grade), checked top to bottom
GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (90, "9"),
    (80, "8"),
    (70, "7"),
    (50, "5"),
    (40, "4"),
)
UNGRADED = "U"


def grade_for_percentage(percentage: float) -> str:
    for minimum, grade in GRADE_THRESHOLDS:
        if percentage >= minimum:
            return grade
    return UNGRADED


def weakness_histogram(feedback: Mapping[str, Feedback]) -> list[WeaknessCount]:
    """
    Count each reported primary flaw.

    Returns:
        (label, count) pairs, most frequent first; ties keep first-seen order.
    """
    counts: dict[str, int] = {}
    for entry in feedback.values():
        if entry.primary_flaw:
            counts[entry.primary_flaw] = counts.get(entry.primary_flaw, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [WeaknessCount(label, count) for label, count in ranked]


def calculate_summary(
    questions: Sequence[Question],
    feedback: Mapping[str, Feedback],
) -> ExamSummary:
    """
    Aggregate feedback over the loaded questions.

    Args:
        questions: Questions of the paper, in order.
        feedback: Feedback keyed by question id. Unanswered questions score 0.

    Returns:
        The exam summary.
    """
    total_score = sum(feedback[q.id].score for q in questions if q.id in feedback)
    total_possible = sum(q.marks for q in questions)
    percentage = round_half_up(100 * total_score / total_possible) if total_possible > 0 else 0

    return ExamSummary(
        total_score=total_score,
        total_possible=total_possible,
        percentage=percentage,
        grade=grade_for_percentage(percentage),
        weaknesses=tuple(weakness_histogram(feedback)),
        answered=sum(1 for q in questions if q.id in feedback),
        question_count=len(questions),
    )

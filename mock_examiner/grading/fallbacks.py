"""
Local substitutes for the tutoring operations.

Used when no provider is configured or a provider call fails, so hints,
explanations, follow-up replies and study plans are always available.
"""

from mock_examiner.grading.evaluator import flatten_answer
from mock_examiner.models import (
    Answer,
    Feedback,
    MarkSchemeEntry,
    Question,
    QuestionType,
    WeaknessCount,
)

CONTEXT_PREVIEW_CHARS = 160
MAX_CHECKLIST_POINTS = 3
MAX_PLAN_WEAKNESSES = 3


def build_hint_from_scheme(question: Question, scheme: MarkSchemeEntry | None) -> str:
    """Build a bullet list of hints from the question context and scheme criteria."""
    hints: list[str] = []
    if question.context and question.context.content:
        preview = question.context.content[:CONTEXT_PREVIEW_CHARS]
        hints.append(f'Re-read the provided context: "{preview}..."')
    if scheme and scheme.criteria:
        hints.append(f"Checklist: {'; '.join(scheme.criteria[:MAX_CHECKLIST_POINTS])}")
    if question.type == QuestionType.MULTIPLE_CHOICE and question.options:
        hints.append("Eliminate clearly wrong options before choosing.")
    if question.type == QuestionType.LONG_TEXT:
        hints.append("Plan your answer with bullet points before writing full sentences.")
    if not hints:
        hints.append("Focus on the command words and allocate your marks accordingly.")
    return "\n".join(f"• {hint}" for hint in hints)


def build_explanation_from_feedback(
    question: Question,
    answer: Answer | None,
    feedback: Feedback,
    scheme: MarkSchemeEntry | None,
) -> str:
    lines = [
        f"You scored {feedback.score}/{feedback.total_marks}.",
        feedback.text or "Review the expected points for this question.",
    ]
    if scheme and scheme.criteria:
        lines.append(f"Key points to include next time: {'; '.join(scheme.criteria)}")
    answer_text = flatten_answer(answer)
    if answer_text:
        lines.append(f"Your answer: {answer_text}")
    return "\n\n".join(lines)


def build_follow_up_reply(user_text: str, question: Question, feedback: Feedback) -> str:
    reminder = feedback.text or "focus on the required points."
    return (
        f'On "{question.question}", remember: {reminder} Regarding "{user_text}", '
        "revisit the missing points and rewrite your answer with them included."
    )


def build_study_plan(percentage: int, weaknesses: list[WeaknessCount]) -> str:
    """
    Build a short Markdown revision plan.

    Args:
        percentage: Overall exam percentage.
        weaknesses: Weakness histogram, most frequent first.

    Returns:
        Markdown text.
    """
    top = sorted(weaknesses, key=lambda w: w.count, reverse=True)[:MAX_PLAN_WEAKNESSES]
    if top:
        focus = "\n".join(
            f"- {w.label} (seen {w.count}x): drill 2 short paragraphs per day that fix this flaw."
            for w in top
        )
    else:
        focus = "- Mixed weaknesses: keep practicing timed extracts + quick AO3 notes."

    return (
        "### Quick Study Plan\n\n"
        f"Current performance: {percentage}%.\n\n"
        f"Focus areas:\n{focus}\n\n"
        "Daily loop:\n"
        "1) 15 mins: revisit a model paragraph and annotate techniques\n"
        "2) 15 mins: write a fresh paragraph fixing the listed weakness\n"
        "3) 10 mins: self-mark against AO1/AO2/AO3 and refine"
    )

"""
Local heuristic evaluator.

Scores an answer against a mark scheme without any remote call. Used as
the last grading tier and as the source of hint/explanation content when
no provider is configured. Every function here is pure and deterministic.
"""

import json
import logging
import math
import re
from typing import Callable

from mock_examiner.models import (
    Answer,
    Feedback,
    GraphAnswer,
    GradingMethod,
    ListAnswer,
    MarkSchemeEntry,
    NumberAnswer,
    Question,
    TableAnswer,
    TextAnswer,
)

logger = logging.getLogger(__name__)

ACCEPTABLE_ANSWER_POINTS = 1.0
CRITERION_POINTS = 0.5
MAX_LISTED_MATCHES = 5

NO_ANSWER_TEXT = "No answer provided."
REGEX_MATCH_TEXT = "Matched expected answer via regex."
NO_SCHEME_TEXT = "Mark scheme unavailable. Compare your answer against the question requirements."
NO_MATCH_TEXT = "Include the key points from the mark scheme to gain marks."
MIRROR_SAMPLES_TEXT = "Try to mirror the sample answers more closely."
KEYWORD_CREDIT_TEXT = "Partial credit awarded based on keyword matches."

_WHITESPACE = re.compile(r"\s+")


# ==============================================================================
# Answer Normalization
# ==============================================================================


def _flatten_text(answer: TextAnswer) -> str:
    return answer.value


def _flatten_number(answer: NumberAnswer) -> str:
    value = answer.value
    # 42.0 reads as "42", the way the student typed it
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _flatten_list(answer: ListAnswer) -> str:
    return "\n".join(answer.items)


def _flatten_table(answer: TableAnswer) -> str:
    return "\n".join(" | ".join(row) for row in answer.rows)


def _flatten_graph(answer: GraphAnswer) -> str:
    points = json.dumps([p.model_dump() for p in answer.points], separators=(",", ":"))
    lines = json.dumps([line.model_dump() for line in answer.lines], separators=(",", ":"))
    return f"Graph submission: points {points} lines {lines}"


_FLATTENERS: dict[str, Callable[..., str]] = {
    "text": _flatten_text,
    "number": _flatten_number,
    "list": _flatten_list,
    "table": _flatten_table,
    "graph": _flatten_graph,
}


def flatten_answer(answer: Answer | None) -> str:
    """Render any answer variant as plain text."""
    if answer is None:
        return ""
    return _FLATTENERS[answer.kind](answer)


def normalize_text(text: str | None) -> str:
    """Lowercase, collapse whitespace and trim."""
    return _WHITESPACE.sub(" ", (text or "").lower()).strip()


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values."""
    return int(math.floor(value + 0.5))


# ==============================================================================
# Pattern Matching
# ==============================================================================


def matches_pattern(pattern: str | None, value: str) -> bool:
    """
    Test a marking pattern against a value, case-insensitively.

    Patterns that fail to compile never match.
    """
    if not pattern:
        return False
    try:
        compiled = re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning("Invalid marking pattern %r: %s", pattern, e)
        return False
    return compiled.search(value.strip()) is not None


# ==============================================================================
# Evaluation
# ==============================================================================


def evaluate(
    question: Question,
    answer: Answer | None,
    scheme: MarkSchemeEntry | None,
) -> Feedback:
    """
    Score an answer locally.

    Args:
        question: The question being answered.
        answer: The student's answer (any variant).
        scheme: Mark scheme entry for the question, if one was parsed.

    Returns:
        Feedback with a score in ``[0, question.marks]``.
    """
    total_marks = question.marks
    answer_text = flatten_answer(answer)
    normalized = normalize_text(answer_text)

    if not normalized:
        return _local_feedback(0, total_marks, NO_ANSWER_TEXT, "")

    if question.marking_regex and matches_pattern(question.marking_regex, normalized):
        return _local_feedback(total_marks, total_marks, REGEX_MATCH_TEXT, f"**{answer_text}**")

    if scheme is None:
        return _local_feedback(0, total_marks, NO_SCHEME_TEXT, answer_text)

    matches: list[str] = []
    points = 0.0

    for acceptable in scheme.acceptable_answers:
        if normalize_text(acceptable) in normalized:
            matches.append(acceptable)
            points += ACCEPTABLE_ANSWER_POINTS

    for criterion in scheme.criteria:
        if normalize_text(criterion) in normalized:
            matches.append(criterion)
            points += CRITERION_POINTS

    score = min(total_marks, max(0, round_half_up(points)))
    unique_matches = list(dict.fromkeys(matches))[:MAX_LISTED_MATCHES]

    parts: list[str] = []
    if unique_matches:
        parts.append(f"Matched mark scheme points: {'; '.join(unique_matches)}.")
    if scheme.criteria and not unique_matches:
        parts.append(NO_MATCH_TEXT)
    if scheme.acceptable_answers and score < total_marks:
        parts.append(MIRROR_SAMPLES_TEXT)

    rewrite = (
        f"Model answer idea: **{scheme.acceptable_answers[0]}**"
        if scheme.acceptable_answers
        else answer_text
    )

    return _local_feedback(score, total_marks, " ".join(parts) or KEYWORD_CREDIT_TEXT, rewrite)


def _local_feedback(score: int, total_marks: int, text: str, rewrite: str) -> Feedback:
    return Feedback(
        score=score,
        total_marks=total_marks,
        text=text,
        rewrite=rewrite,
        primary_flaw=None,
        method=GradingMethod.LOCAL,
    )

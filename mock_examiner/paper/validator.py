"""
Answer validation module.

Checks that an answer has content before it is sent for grading. Empty
answers are rejected here and never produce feedback.
"""

from mock_examiner.models import (
    Answer,
    GraphAnswer,
    ListAnswer,
    NumberAnswer,
    Question,
    TableAnswer,
    TextAnswer,
)


class AnswerValidationError(Exception):
    """Raised when an answer is missing or empty."""

    def __init__(self, question_id: str, reason: str = "Answer is empty"):
        self.question_id = question_id
        self.reason = reason
        super().__init__(f"Question {question_id}: {reason}")


class AnswerValidator:
    """
    Validates answers before submission.

    Checks:
    1. An answer exists
    2. Text has non-whitespace content
    3. Lists and tables have at least one filled cell
    4. Graphs have at least one point or line
    """

    def has_content(self, answer: Answer | None) -> bool:
        if answer is None:
            return False
        if isinstance(answer, TextAnswer):
            return bool(answer.value.strip())
        if isinstance(answer, NumberAnswer):
            return True
        if isinstance(answer, ListAnswer):
            return any(item.strip() for item in answer.items)
        if isinstance(answer, TableAnswer):
            return any(cell.strip() for row in answer.rows for cell in row)
        if isinstance(answer, GraphAnswer):
            return bool(answer.points or answer.lines)
        return False

    def validate_or_raise(self, question: Question, answer: Answer | None) -> None:
        """
        Validate an answer and raise if it is empty.

        Args:
            question: The question being answered.
            answer: The answer to check.

        Raises:
            AnswerValidationError: If the answer has no content.
        """
        if answer is None:
            raise AnswerValidationError(question.id, "No answer provided")
        if not self.has_content(answer):
            raise AnswerValidationError(question.id)

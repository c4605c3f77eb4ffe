"""
Paper Processing Module.

Normalizes extracted questions and mark schemes, and validates answers.
"""

from mock_examiner.paper.parser import PaperParseError, PaperParser
from mock_examiner.paper.validator import AnswerValidationError, AnswerValidator

__all__ = [
    "AnswerValidationError",
    "AnswerValidator",
    "PaperParseError",
    "PaperParser",
]

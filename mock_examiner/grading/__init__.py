"""
Grading Module.

Tiered grading pipeline: regex fast path, remote grader and tutor, and the
local heuristic evaluator.
"""

from mock_examiner.grading.engine import GradingOrchestrator
from mock_examiner.grading.evaluator import evaluate, flatten_answer
from mock_examiner.grading.llm_client import LLMClient, LLMError, TransientNetworkError
from mock_examiner.grading.prompt_builder import PromptBuilder
from mock_examiner.grading.scorer import ResponseParseError, ResponseParser

__all__ = [
    "GradingOrchestrator",
    "LLMClient",
    "LLMError",
    "PromptBuilder",
    "ResponseParseError",
    "ResponseParser",
    "TransientNetworkError",
    "evaluate",
    "flatten_answer",
]

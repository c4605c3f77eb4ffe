"""
Pytest configuration and fixtures.

Provides common test fixtures for all test modules.
"""

import json
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

from mock_examiner.config import Settings
from mock_examiner.grading.llm_client import LLMClient
from mock_examiner.models import (
    MarkSchemeEntry,
    Question,
    QuestionContext,
    QuestionType,
)
from mock_examiner.session.storage import InMemoryStore
from mock_examiner.session.store import ExamSessionStore


# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Settings with both providers configured and near-instant backoff."""
    return Settings(
        _env_file=None,
        grader_api_key="test-grader-key",
        grader_base_url="https://grader.test.local/v1",
        grader_model="grader-primary",
        grader_fallback_model="grader-secondary",
        tutor_api_key="test-tutor-key",
        tutor_base_url="https://tutor.test.local/v1",
        tutor_model="tutor-model",
        retry_max_attempts=3,
        retry_base_delay=0.01,
        retry_max_delay=0.01,
        storage_directory=temp_dir / "state",
    )


@pytest.fixture
def offline_settings(temp_dir: Path) -> Settings:
    """Settings with no provider keys: everything is marked locally."""
    return Settings(
        _env_file=None,
        grader_api_key=None,
        tutor_api_key=None,
        retry_base_delay=0.01,
        retry_max_delay=0.01,
        storage_directory=temp_dir / "state",
    )


# ==============================================================================
# Paper Fixtures
# ==============================================================================


@pytest.fixture
def short_question() -> Question:
    """A one-mark question with a marking pattern."""
    return Question(
        id="1",
        type=QuestionType.NUMERICAL,
        marks=1,
        section="Section A",
        question="What is 6 multiplied by 7?",
        page_number=2,
        marking_regex="^42$",
    )


@pytest.fixture
def essay_question() -> Question:
    """A four-mark analysis question with an extract."""
    return Question(
        id="2",
        type=QuestionType.LONG_TEXT,
        marks=4,
        section="Section A",
        question="How does the writer use the weather to create tension?",
        page_number=3,
        context=QuestionContext(
            title="Source A",
            content="The sky darkened as the storm rolled over the hills.",
            lines="1-5",
        ),
    )


@pytest.fixture
def sample_scheme() -> MarkSchemeEntry:
    """Mark scheme entry for the essay question."""
    return MarkSchemeEntry(
        total_marks=4,
        criteria=("uses a quotation", "explains the effect"),
        acceptable_answers=("pathetic fallacy", "foreshadowing"),
    )


@pytest.fixture
def sample_questions() -> list[Question]:
    """A three-question paper worth 4, 6 and 10 marks."""
    return [
        Question(id="q1", type=QuestionType.SHORT_TEXT, marks=4, question="Name four features.", page_number=1),
        Question(id="q2", type=QuestionType.LONG_TEXT, marks=6, question="Explain the effect.", page_number=2),
        Question(id="q3", type=QuestionType.LONG_TEXT, marks=10, question="Evaluate the ending.", page_number=4),
    ]


# ==============================================================================
# Provider Response Fixtures
# ==============================================================================


@pytest.fixture
def grader_response() -> str:
    """Strict grader reply awarding 3 marks."""
    return json.dumps(
        {
            "score": 3,
            "max_mark": 4,
            "AO_breakdown": {"AO1": "Clear", "AO2": "Some analysis", "AO3": "N/A"},
            "primary_flaw": "Limited analysis of language",
        }
    )


@pytest.fixture
def tutor_response() -> str:
    """Tutor reply with a model paragraph section."""
    return (
        "**Score: 3/4**\n\n"
        "You identified the technique but did not fully explain its effect.\n\n"
        "- Embed a short quotation\n"
        "- Explain how the storm mirrors the conflict\n\n"
        "## Model Paragraph\n"
        "The writer uses **pathetic fallacy** as the sky darkens, which **foreshadows** the conflict.\n\n"
        "Keep practising!"
    )


@pytest.fixture
def extraction_response() -> str:
    """Question extraction reply for a two-question paper."""
    return json.dumps(
        {
            "metadata": {"subject": "English Language", "board": "AQA", "year": 2023, "paperNumber": "1"},
            "questions": [
                {
                    "id": "1",
                    "section": "Section A",
                    "type": "short_text",
                    "marks": 1,
                    "pageNumber": 2,
                    "question": "Give the name of the village.",
                    "markingRegex": "^hollow(s)?$",
                },
                {
                    "id": "2",
                    "section": "Section A",
                    "marks": 8,
                    "pageNumber": 3,
                    "question": "How does the writer use language to describe the storm?",
                    "context": {"type": "text", "title": "Source A", "content": "The storm broke.", "lines": "1-10"},
                },
            ],
        }
    )


# ==============================================================================
# Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_grader() -> MagicMock:
    """Grader client double; its coroutine methods are AsyncMocks."""
    client = MagicMock(spec=LLMClient)
    client.default_model = "grader-primary"
    return client


@pytest.fixture
def mock_tutor() -> MagicMock:
    """Tutor client double; its coroutine methods are AsyncMocks."""
    client = MagicMock(spec=LLMClient)
    client.default_model = "tutor-model"
    return client


# ==============================================================================
# Session Fixtures
# ==============================================================================


@pytest.fixture
def memory_storage() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def store(memory_storage: InMemoryStore) -> ExamSessionStore:
    """Empty session store over in-memory storage."""
    return ExamSessionStore(memory_storage)


@pytest.fixture
def loaded_store(store: ExamSessionStore, sample_questions: list[Question]) -> ExamSessionStore:
    """Session store with the sample paper loaded."""
    store.load_paper(sample_questions, paper_id="paper-123")
    return store


# ==============================================================================
# File Fixtures
# ==============================================================================


@pytest.fixture
def paper_text() -> str:
    """Extracted text of a question paper, long enough to not look scanned."""
    return (
        "GCSE ENGLISH LANGUAGE Paper 1 Explorations in Creative Reading and Writing\n"
        "Section A: Reading. Answer all questions in this section.\n"
        "0 1 Read again the first part of the source, from lines 1 to 4. "
        "List four things from this part of the source about the village. [4 marks]\n"
        "0 2 Look in detail at this extract, from lines 5 to 12 of the source. "
        "How does the writer use language to describe the storm? "
        "You could include the writer's choice of words and phrases, language features "
        "and techniques, and sentence forms. [8 marks]\n"
    )


@pytest.fixture
def paper_file(temp_dir: Path, paper_text: str) -> Path:
    path = temp_dir / "paper.txt"
    path.write_text(paper_text, encoding="utf-8")
    return path


@pytest.fixture
def scanned_paper_file(temp_dir: Path) -> Path:
    """A paper with almost no extractable text."""
    path = temp_dir / "scanned.txt"
    path.write_text("Page 1\fPage 2", encoding="utf-8")
    return path

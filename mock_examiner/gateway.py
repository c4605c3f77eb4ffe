"""
AI provider gateway.

One object the exam flow talks to for every provider-backed operation:
paper and mark scheme extraction, grading, hints, explanations, follow-up
replies and study plans. Extraction failures are raised to the caller;
every tutoring operation falls back to a local builder instead.
"""

import asyncio
import logging
from pathlib import Path

from mock_examiner.config import Settings, get_settings
from mock_examiner.extractors import extract_document, strip_page_markers
from mock_examiner.grading import fallbacks
from mock_examiner.grading.engine import GradingOrchestrator
from mock_examiner.grading.evaluator import flatten_answer
from mock_examiner.grading.llm_client import LLMClient, LLMError
from mock_examiner.grading.prompt_builder import PromptBuilder
from mock_examiner.models import (
    Answer,
    ChatMessage,
    ExtractionResult,
    Feedback,
    MarkSchemeEntry,
    Question,
    WeaknessCount,
)
from mock_examiner.paper.parser import PaperParseError, PaperParser

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.1
MARK_SCHEME_TEMPERATURE = 0.2
MIN_INSERT_CHARACTERS = 50


class AIProviderGateway:
    """
    Provider-backed operations with local fallbacks.

    The tutor provider handles extraction; the grader provider handles
    hints, explanations, follow-ups and study plans.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        grader_client: LLMClient | None = None,
        tutor_client: LLMClient | None = None,
        orchestrator: GradingOrchestrator | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            grader_client: Grader provider client, built from settings if omitted.
            tutor_client: Tutor provider client, built from settings if omitted.
            orchestrator: Grading pipeline, built over the same clients if omitted.
        """
        self._settings = settings or get_settings()
        self._grader = grader_client
        self._tutor = tutor_client
        if self._grader is None and self._settings.has_grader:
            self._grader = LLMClient.for_grader(self._settings)
        if self._tutor is None and self._settings.has_tutor:
            self._tutor = LLMClient.for_tutor(self._settings)
        self._orchestrator = orchestrator or GradingOrchestrator(
            self._settings, grader_client=self._grader, tutor_client=self._tutor
        )
        self._paper_parser = PaperParser()

    @property
    def orchestrator(self) -> GradingOrchestrator:
        return self._orchestrator

    # ==========================================================================
    # Extraction
    # ==========================================================================

    async def extract_questions(
        self,
        paper_path: Path | str,
        insert_path: Path | str | None = None,
    ) -> ExtractionResult:
        """
        Extract questions from a question paper.

        Args:
            paper_path: Question paper file.
            insert_path: Optional insert / source booklet.

        Returns:
            The extracted questions and metadata.

        Raises:
            ExtractionError: If a file cannot be read.
            PaperParseError: If the paper looks scanned or yields no questions.
            LLMError: If the provider call fails.
        """
        tutor = self._require_tutor()

        paper = await asyncio.to_thread(extract_document, paper_path)
        if len(strip_page_markers(paper.content)) < self._settings.min_extracted_characters:
            raise PaperParseError(
                "Low extracted text volume; likely a scanned PDF. "
                "Run OCR or use a text-based PDF."
            )

        insert_text = None
        if insert_path is not None:
            insert = await asyncio.to_thread(extract_document, insert_path)
            insert_text = insert.content

        prompt = PromptBuilder.build_extraction_prompt(paper.content, insert_text)
        response = await tutor.generate(
            None,
            prompt,
            temperature=EXTRACTION_TEMPERATURE,
            max_tokens=self._settings.extraction_max_tokens,
            json_mode=True,
        )
        result = self._paper_parser.parse_extraction(response)
        logger.info("Extracted %d questions from %s", len(result.questions), paper_path)
        return result

    async def extract_insert_content(self, insert_path: Path | str) -> str:
        """
        Read an insert so the student can quote from it. No provider call.

        Raises:
            ExtractionError: If the file cannot be read.
            PaperParseError: If it holds too little text to quote from.
        """
        insert = await asyncio.to_thread(extract_document, insert_path)
        text = insert.content.strip()
        if len(strip_page_markers(text)) < MIN_INSERT_CHARACTERS:
            raise PaperParseError("Insert has too little extractable text")
        return text

    async def parse_mark_scheme(self, scheme_path: Path | str) -> dict[str, MarkSchemeEntry]:
        """
        Parse a mark scheme into per-question entries.

        Raises:
            ExtractionError: If the file cannot be read.
            PaperParseError: If the scheme looks scanned or is not valid JSON.
            LLMError: If the provider call fails.
        """
        tutor = self._require_tutor()

        scheme = await asyncio.to_thread(extract_document, scheme_path)
        if len(strip_page_markers(scheme.content)) < self._settings.min_extracted_characters:
            raise PaperParseError("Low extracted mark scheme text")

        response = await tutor.generate(
            None,
            PromptBuilder.build_mark_scheme_prompt(scheme.content),
            temperature=MARK_SCHEME_TEMPERATURE,
            max_tokens=self._settings.extraction_max_tokens,
            json_mode=True,
        )
        return self._paper_parser.parse_mark_scheme(response)

    def _require_tutor(self) -> LLMClient:
        if self._tutor is None:
            raise LLMError("Tutor API key is not configured; cannot extract papers")
        return self._tutor

    # ==========================================================================
    # Grading and Tutoring
    # ==========================================================================

    async def mark_question(
        self,
        question: Question,
        answer: Answer | None,
        scheme: MarkSchemeEntry | None,
    ) -> Feedback:
        return await self._orchestrator.grade(question, answer, scheme)

    async def get_hint(self, question: Question, scheme: MarkSchemeEntry | None) -> str:
        return await self._chat_or_fallback(
            PromptBuilder.build_hint_messages(question, scheme),
            lambda: fallbacks.build_hint_from_scheme(question, scheme),
            "hint",
        )

    async def explain_feedback(
        self,
        question: Question,
        answer: Answer | None,
        feedback: Feedback,
        scheme: MarkSchemeEntry | None,
    ) -> str:
        return await self._chat_or_fallback(
            PromptBuilder.build_explanation_messages(question, flatten_answer(answer), feedback, scheme),
            lambda: fallbacks.build_explanation_from_feedback(question, answer, feedback, scheme),
            "explanation",
        )

    async def follow_up(
        self,
        question: Question,
        answer: Answer | None,
        feedback: Feedback,
        history: list[ChatMessage],
    ) -> str:
        """
        Reply to the latest user message about a graded question.

        Args:
            history: The conversation so far, ending with the user's message.
        """
        last_user_text = next((m.text for m in reversed(history) if m.role == "user"), "")
        return await self._chat_or_fallback(
            PromptBuilder.build_follow_up_messages(question, flatten_answer(answer), feedback, history),
            lambda: fallbacks.build_follow_up_reply(last_user_text, question, feedback),
            "follow-up",
        )

    async def generate_study_plan(
        self,
        percentage: int,
        weaknesses: list[WeaknessCount],
        question_count: int,
    ) -> str:
        return await self._chat_or_fallback(
            PromptBuilder.build_study_plan_messages(percentage, weaknesses, question_count),
            lambda: fallbacks.build_study_plan(percentage, weaknesses),
            "study plan",
        )

    async def _chat_or_fallback(self, messages, fallback, purpose: str) -> str:
        if self._grader is None:
            return fallback()
        try:
            return await self._grader.chat(
                messages,
                model=self._settings.grader_fallback_model,
                temperature=self._settings.grader_temperature,
            )
        except LLMError as e:
            logger.warning("Provider %s failed, using local text: %s", purpose, e)
            return fallback()

    async def health_check(self) -> dict[str, bool]:
        return await self._orchestrator.health_check()

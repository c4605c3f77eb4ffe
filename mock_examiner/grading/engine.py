"""
Grading engine - the tiered orchestrator.

Resolves feedback for one answer by trying, in order:
1. A regex fast path for short scalar answers
2. A strict remote grader (primary model, then a secondary model)
3. A remote tutor that explains the grade and writes a model paragraph
4. The local heuristic evaluator when the grader tier fails
"""

import logging
from typing import NamedTuple

from mock_examiner.config import Settings, get_settings
from mock_examiner.grading import evaluator
from mock_examiner.grading.llm_client import LLMClient, LLMError
from mock_examiner.grading.prompt_builder import PromptBuilder
from mock_examiner.grading.scorer import GraderVerdict, ResponseParser
from mock_examiner.models import (
    SCALAR_ANSWERS,
    Answer,
    Feedback,
    GradingMethod,
    MarkSchemeEntry,
    Question,
)

logger = logging.getLogger(__name__)

AUTO_VERIFIED_TEXT = "Correct! (Auto-verified)"
GRADER_UNAVAILABLE_PREFIX = "AI grading unavailable. Local estimate: "
NO_GRADER_KEY_PREFIX = "Add a grader API key to enable AI marking. Local estimate: "


class GraderOutcome(NamedTuple):
    """Verdict from the grader tier and the model that produced it."""

    verdict: GraderVerdict
    model: str


class GradingOrchestrator:
    """
    Tiered grading pipeline.

    Never raises for provider failures and never touches the session store;
    callers record the returned Feedback.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        grader_client: LLMClient | None = None,
        tutor_client: LLMClient | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            grader_client: Strict grading client. Built from settings when a
                grader key is configured.
            tutor_client: Tutor client. Built from settings when a tutor key
                is configured.
        """
        self._settings = settings or get_settings()
        self._grader = grader_client
        self._tutor = tutor_client
        if self._grader is None and self._settings.has_grader:
            self._grader = LLMClient.for_grader(self._settings)
        if self._tutor is None and self._settings.has_tutor:
            self._tutor = LLMClient.for_tutor(self._settings)
        self._response_parser = ResponseParser()

    @property
    def has_grader(self) -> bool:
        return self._grader is not None

    @property
    def has_tutor(self) -> bool:
        return self._tutor is not None

    def try_fast_path(self, question: Question, answer: Answer | None) -> Feedback | None:
        """
        Award full marks when a scalar answer matches the question's pattern.

        Returns:
            Feedback on a match, otherwise None.
        """
        if not question.marking_regex or not isinstance(answer, SCALAR_ANSWERS):
            return None

        value = evaluator.flatten_answer(answer).strip()
        if not evaluator.matches_pattern(question.marking_regex, value):
            return None

        return Feedback(
            score=question.marks,
            total_marks=question.marks,
            text=AUTO_VERIFIED_TEXT,
            rewrite=f"**{value}**",
            primary_flaw=None,
            method=GradingMethod.REGEX,
        )

    async def grade(
        self,
        question: Question,
        answer: Answer | None,
        scheme: MarkSchemeEntry | None = None,
    ) -> Feedback:
        """
        Grade an answer.

        Args:
            question: The question being answered.
            answer: The student's answer.
            scheme: Mark scheme entry for the question, if any.

        Returns:
            Feedback whose score lies in ``[0, question.marks]``.
        """
        fast = self.try_fast_path(question, answer)
        if fast is not None:
            return fast

        answer_text = evaluator.flatten_answer(answer)

        if self._grader is None:
            return self._local_fallback(question, answer, scheme, NO_GRADER_KEY_PREFIX)

        try:
            outcome = await self._run_grader(question, answer_text, scheme)
        except LLMError as e:
            logger.warning("Grader tier failed for question %s, using local estimate: %s", question.id, e)
            return self._local_fallback(question, answer, scheme, GRADER_UNAVAILABLE_PREFIX)

        verdict = outcome.verdict
        tutor_model = self._settings.tutor_model
        rewrite = evaluator.evaluate(question, answer, scheme).rewrite

        try:
            tutor_text = await self._run_tutor(question, answer_text, scheme, verdict)
            rewrite = self._response_parser.extract_model_paragraph(tutor_text) or tutor_text
        except LLMError as e:
            logger.warning("Tutor tier failed for question %s: %s", question.id, e)
            tutor_text = f"Score: {verdict.score}/{question.marks}. Focus on: {verdict.primary_flaw}"

        return Feedback(
            score=verdict.score,
            total_marks=question.marks,
            text=tutor_text,
            rewrite=rewrite,
            primary_flaw=verdict.primary_flaw,
            method=GradingMethod.LLM,
            audit={"grader_model": outcome.model, "tutor_model": tutor_model},
        )

    async def _run_grader(
        self,
        question: Question,
        answer_text: str,
        scheme: MarkSchemeEntry | None,
    ) -> GraderOutcome:
        """
        Ask the primary grading model, then the secondary model once.

        Raises:
            LLMError: If both models fail.
        """
        if self._grader is None:
            raise LLMError("Grader API key is not configured")
        messages = PromptBuilder.build_grading_messages(question, answer_text, scheme)
        model = self._settings.grader_model

        try:
            response = await self._grader.chat(
                messages,
                model=model,
                temperature=self._settings.grader_temperature,
                json_mode=True,
            )
        except LLMError as e:
            model = self._settings.grader_fallback_model
            logger.warning("Primary grader failed (%s), retrying with %s", e, model)
            response = await self._grader.chat(
                messages,
                model=model,
                temperature=self._settings.grader_temperature,
            )

        verdict = self._response_parser.parse_verdict(response, question.marks)
        if not verdict.parsed:
            logger.warning("Unparsable grader output for question %s, defaulting to 0", question.id)
        return GraderOutcome(verdict, model)

    async def _run_tutor(
        self,
        question: Question,
        answer_text: str,
        scheme: MarkSchemeEntry | None,
        verdict: GraderVerdict,
    ) -> str:
        if self._tutor is None:
            raise LLMError("Tutor API key is not configured")
        prompt = PromptBuilder.build_tutor_prompt(
            question, answer_text, scheme, verdict.score, verdict.primary_flaw
        )
        return await self._tutor.generate(
            None,
            prompt,
            model=self._settings.tutor_model,
            temperature=self._settings.tutor_temperature,
            max_tokens=self._settings.tutor_max_tokens,
        )

    def _local_fallback(
        self,
        question: Question,
        answer: Answer | None,
        scheme: MarkSchemeEntry | None,
        prefix: str,
    ) -> Feedback:
        local = evaluator.evaluate(question, answer, scheme)
        return local.model_copy(update={"text": f"{prefix}{local.text}"})

    async def health_check(self) -> dict[str, bool]:
        """
        Check which providers are reachable.

        Returns:
            Mapping of provider role to reachability.
        """
        status: dict[str, bool] = {}
        if self._grader is not None:
            status["grader"] = await self._grader.health_check()
        if self._tutor is not None:
            status["tutor"] = await self._tutor.health_check()
        return status

"""
Unit tests for the grading pipeline.

Tests the LLM client, prompt builder, response parser and the tiered
grading orchestrator with mocked provider clients.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mock_examiner.config import Settings
from mock_examiner.grading import GradingOrchestrator, LLMClient, LLMError, PromptBuilder, TransientNetworkError
from mock_examiner.grading.engine import AUTO_VERIFIED_TEXT, GRADER_UNAVAILABLE_PREFIX, NO_GRADER_KEY_PREFIX
from mock_examiner.grading.scorer import DEFAULT_PRIMARY_FLAW, ResponseParseError, ResponseParser
from mock_examiner.models import (
    GradingMethod,
    ListAnswer,
    MarkSchemeEntry,
    NumberAnswer,
    Question,
    TextAnswer,
)


class TestPromptBuilder:
    """Tests for PromptBuilder."""

    def test_grader_system_prompt(self) -> None:
        prompt = PromptBuilder.GRADER_SYSTEM_PROMPT

        assert "Senior Chief Examiner" in prompt
        assert "OUTPUT JSON ONLY" in prompt
        assert "primary_flaw" in prompt

    def test_grading_messages_include_question_scheme_and_answer(
        self, essay_question: Question, sample_scheme: MarkSchemeEntry
    ) -> None:
        messages = PromptBuilder.build_grading_messages(essay_question, "It is stormy.", sample_scheme)

        assert [m["role"] for m in messages] == ["system", "user"]
        user = messages[1]["content"]
        assert "Question (4 marks)" in user
        assert "Context snippet: The sky darkened" in user
        assert '"acceptableAnswers": ["pathetic fallacy", "foreshadowing"]' in user
        assert "Student answer: It is stormy." in user

    def test_grading_messages_without_answer_or_scheme(self, essay_question: Question) -> None:
        user = PromptBuilder.build_grading_messages(essay_question, "", None)[1]["content"]

        assert "Mark scheme JSON: {}" in user
        assert "Student answer: (no answer)" in user

    def test_tutor_prompt_carries_score_and_flaw(self, essay_question: Question) -> None:
        prompt = PromptBuilder.build_tutor_prompt(essay_question, "answer", None, 3, "Weak analysis")

        assert "STUDENT SCORE: 3/4" in prompt
        assert 'PRIMARY WEAKNESS: "Weak analysis"' in prompt
        assert "Model Paragraph" in prompt

    def test_extraction_prompt_appends_insert(self) -> None:
        prompt = PromptBuilder.build_extraction_prompt("paper body", "insert body")

        assert "PAPER TEXT:\npaper body" in prompt
        assert "INSERT / SOURCE TEXT:\ninsert body" in prompt


class TestResponseParser:
    """Tests for ResponseParser."""

    def test_parse_json_in_code_fence(self) -> None:
        parser = ResponseParser()
        data = parser.parse_json('Here you go:\n```json\n{"score": 2}\n```')

        assert data == {"score": 2}

    def test_parse_json_repairs_trailing_commas(self) -> None:
        assert ResponseParser().parse_json('{"a": [1, 2,], "b": 3,}') == {"a": [1, 2], "b": 3}

    def test_extract_json_ignores_braces_in_strings(self) -> None:
        text = 'prefix {"flaw": "missing } brace", "n": {"x": 1}} suffix'
        assert ResponseParser().extract_json(text) == '{"flaw": "missing } brace", "n": {"x": 1}}'

    def test_parse_json_without_object(self) -> None:
        with pytest.raises(ResponseParseError, match="No JSON object found"):
            ResponseParser().parse_json("no structured output here")

    def test_parse_json_unclosed(self) -> None:
        with pytest.raises(ResponseParseError, match="Unclosed JSON object"):
            ResponseParser().parse_json('{"score": 1')

    def test_parse_verdict(self, grader_response: str) -> None:
        verdict = ResponseParser().parse_verdict(grader_response, max_marks=4)

        assert verdict.score == 3
        assert verdict.primary_flaw == "Limited analysis of language"
        assert verdict.ao_breakdown == {"AO1": "Clear", "AO2": "Some analysis", "AO3": "N/A"}
        assert verdict.parsed is True

    @pytest.mark.parametrize(
        "score,expected",
        [(99, 4), (-3, 0), (2.9, 2), ("3", 3), ("many", 0), (None, 0), (True, 0)],
    )
    def test_parse_verdict_clamps_score(self, score: object, expected: int) -> None:
        response = json.dumps({"score": score, "primary_flaw": "x"})
        assert ResponseParser().parse_verdict(response, max_marks=4).score == expected

    def test_parse_verdict_unparsable_defaults(self) -> None:
        verdict = ResponseParser().parse_verdict("I think this deserves 3 marks.", max_marks=4)

        assert verdict.score == 0
        assert verdict.primary_flaw == DEFAULT_PRIMARY_FLAW
        assert verdict.parsed is False

    def test_parse_verdict_accepts_camel_case_flaw(self) -> None:
        verdict = ResponseParser().parse_verdict('{"score": 1, "primaryFlaw": "No quotation"}', 4)
        assert verdict.primary_flaw == "No quotation"

    def test_extract_model_paragraph(self, tutor_response: str) -> None:
        paragraph = ResponseParser().extract_model_paragraph(tutor_response)

        assert paragraph == (
            "The writer uses **pathetic fallacy** as the sky darkens, which **foreshadows** the conflict."
        )

    def test_extract_model_paragraph_with_bold_header(self) -> None:
        text = "**Model Paragraph:** A better answer.\n\nTrailing notes."
        assert ResponseParser().extract_model_paragraph(text) == "A better answer."

    def test_extract_model_paragraph_missing(self) -> None:
        assert ResponseParser().extract_model_paragraph("No paragraph here.") is None
        assert ResponseParser().extract_model_paragraph(None) is None


class TestLLMClient:
    """Tests for LLMClient with the SDK mocked out."""

    @staticmethod
    def _completion(content: str | None) -> MagicMock:
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = content
        return response

    def test_sdk_retries_disabled(self, test_settings: Settings) -> None:
        with patch("mock_examiner.grading.llm_client.AsyncOpenAI") as mock_openai:
            LLMClient.for_grader(test_settings)

        mock_openai.assert_called_once_with(
            api_key="test-grader-key",
            base_url="https://grader.test.local/v1",
            max_retries=0,
        )

    def test_factory_requires_key(self, offline_settings: Settings) -> None:
        with pytest.raises(LLMError, match="not configured"):
            LLMClient.for_grader(offline_settings)
        with pytest.raises(LLMError, match="not configured"):
            LLMClient.for_tutor(offline_settings)

    @pytest.mark.asyncio
    async def test_chat_returns_content(self, test_settings: Settings) -> None:
        with patch("mock_examiner.grading.llm_client.AsyncOpenAI") as mock_openai:
            create = AsyncMock(return_value=self._completion("hello"))
            mock_openai.return_value.chat.completions.create = create
            client = LLMClient.for_tutor(test_settings)

            result = await client.chat([{"role": "user", "content": "hi"}], json_mode=True, max_tokens=50)

        assert result == "hello"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "tutor-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["max_tokens"] == 50

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, test_settings: Settings) -> None:
        with patch("mock_examiner.grading.llm_client.AsyncOpenAI") as mock_openai:
            create = AsyncMock(return_value=self._completion(None))
            mock_openai.return_value.chat.completions.create = create
            client = LLMClient.for_grader(test_settings)

            with pytest.raises(LLMError, match="Empty response"):
                await client.generate("system", "user")

        create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_network_failure_retried_then_raised(self, test_settings: Settings) -> None:
        with patch("mock_examiner.grading.llm_client.AsyncOpenAI") as mock_openai, patch(
            "mock_examiner.retry.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            create = AsyncMock(side_effect=ConnectionError("Connection reset"))
            mock_openai.return_value.chat.completions.create = create
            client = LLMClient.for_grader(test_settings)

            with pytest.raises(TransientNetworkError) as exc_info:
                await client.chat([{"role": "user", "content": "hi"}])

        assert create.await_count == test_settings.retry_max_attempts
        assert mock_sleep.await_count == test_settings.retry_max_attempts - 1
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_health_check_false_on_error(self, test_settings: Settings) -> None:
        with patch("mock_examiner.grading.llm_client.AsyncOpenAI") as mock_openai:
            mock_openai.return_value.chat.completions.create = AsyncMock(side_effect=RuntimeError("down"))
            client = LLMClient.for_grader(test_settings)

            assert await client.health_check() is False


class TestGradingOrchestrator:
    """Tests for GradingOrchestrator."""

    @pytest.fixture
    def orchestrator(
        self, test_settings: Settings, mock_grader: MagicMock, mock_tutor: MagicMock
    ) -> GradingOrchestrator:
        return GradingOrchestrator(test_settings, grader_client=mock_grader, tutor_client=mock_tutor)

    @pytest.mark.asyncio
    async def test_fast_path_awards_full_marks_without_network(
        self,
        orchestrator: GradingOrchestrator,
        short_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
    ) -> None:
        feedback = await orchestrator.grade(short_question, TextAnswer(value=" 42 "))

        assert feedback.score == short_question.marks
        assert feedback.text == AUTO_VERIFIED_TEXT
        assert feedback.rewrite == "**42**"
        assert feedback.primary_flaw is None
        assert feedback.method == GradingMethod.REGEX
        mock_grader.chat.assert_not_awaited()
        mock_tutor.generate.assert_not_awaited()

    def test_fast_path_accepts_numbers(self, orchestrator: GradingOrchestrator, short_question: Question) -> None:
        feedback = orchestrator.try_fast_path(short_question, NumberAnswer(value=42))
        assert feedback is not None and feedback.score == 1

    def test_fast_path_accepts_whole_floats(
        self, orchestrator: GradingOrchestrator, short_question: Question
    ) -> None:
        feedback = orchestrator.try_fast_path(short_question, NumberAnswer(value=42.0))
        assert feedback is not None and feedback.text == AUTO_VERIFIED_TEXT

    def test_fast_path_ignores_non_scalar_answers(
        self, orchestrator: GradingOrchestrator, short_question: Question
    ) -> None:
        assert orchestrator.try_fast_path(short_question, ListAnswer(items=("42",))) is None

    @pytest.mark.asyncio
    async def test_fast_path_miss_goes_to_grader(
        self,
        orchestrator: GradingOrchestrator,
        short_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
    ) -> None:
        mock_grader.chat.return_value = '{"score": 0, "primary_flaw": "Wrong product"}'
        mock_tutor.generate.return_value = "Not quite."

        feedback = await orchestrator.grade(short_question, TextAnswer(value="48"))

        assert feedback.score == 0
        assert feedback.primary_flaw == "Wrong product"
        mock_grader.chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_full_pipeline(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        sample_scheme: MarkSchemeEntry,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        grader_response: str,
        tutor_response: str,
    ) -> None:
        mock_grader.chat.return_value = grader_response
        mock_tutor.generate.return_value = tutor_response

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="It is stormy."), sample_scheme)

        assert feedback.score == 3
        assert feedback.total_marks == 4
        assert feedback.text == tutor_response
        assert feedback.rewrite.startswith("The writer uses **pathetic fallacy**")
        assert feedback.primary_flaw == "Limited analysis of language"
        assert feedback.method == GradingMethod.LLM
        assert feedback.audit == {"grader_model": "grader-primary", "tutor_model": "tutor-model"}

        grader_call = mock_grader.chat.call_args
        assert grader_call.kwargs["model"] == "grader-primary"
        assert grader_call.kwargs["json_mode"] is True
        tutor_prompt = mock_tutor.generate.call_args.args[1]
        assert "STUDENT SCORE: 3/4" in tutor_prompt

    @pytest.mark.asyncio
    async def test_secondary_model_used_when_primary_fails(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        grader_response: str,
    ) -> None:
        mock_grader.chat.side_effect = [LLMError("primary down"), grader_response]
        mock_tutor.generate.return_value = "Explanation"

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"))

        assert mock_grader.chat.await_count == 2
        assert mock_grader.chat.call_args_list[1].kwargs["model"] == "grader-secondary"
        assert feedback.score == 3
        assert feedback.audit["grader_model"] == "grader-secondary"

    @pytest.mark.asyncio
    async def test_local_fallback_when_both_graders_fail(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        sample_scheme: MarkSchemeEntry,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
    ) -> None:
        mock_grader.chat.side_effect = TransientNetworkError("unreachable")

        feedback = await orchestrator.grade(
            essay_question, TextAnswer(value="pathetic fallacy"), sample_scheme
        )

        assert mock_grader.chat.await_count == 2
        mock_tutor.generate.assert_not_awaited()
        assert feedback.method == GradingMethod.LOCAL
        assert feedback.text.startswith(GRADER_UNAVAILABLE_PREFIX)
        assert feedback.score == 1

    @pytest.mark.asyncio
    async def test_local_marking_without_grader_key(
        self, offline_settings: Settings, essay_question: Question, sample_scheme: MarkSchemeEntry
    ) -> None:
        orchestrator = GradingOrchestrator(offline_settings)

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="foreshadowing"), sample_scheme)

        assert orchestrator.has_grader is False
        assert feedback.text.startswith(NO_GRADER_KEY_PREFIX)
        assert feedback.method == GradingMethod.LOCAL

    @pytest.mark.asyncio
    async def test_grader_tier_without_client_raises(
        self, offline_settings: Settings, essay_question: Question
    ) -> None:
        orchestrator = GradingOrchestrator(offline_settings)

        with pytest.raises(LLMError, match="Grader API key"):
            await orchestrator._run_grader(essay_question, "answer", None)

    @pytest.mark.asyncio
    async def test_tutor_failure_keeps_grader_score(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        sample_scheme: MarkSchemeEntry,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        grader_response: str,
    ) -> None:
        mock_grader.chat.return_value = grader_response
        mock_tutor.generate.side_effect = LLMError("tutor down")

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"), sample_scheme)

        assert feedback.score == 3
        assert feedback.text == "Score: 3/4. Focus on: Limited analysis of language"
        assert feedback.rewrite == "Model answer idea: **pathetic fallacy**"
        assert feedback.method == GradingMethod.LLM

    @pytest.mark.asyncio
    async def test_missing_tutor_uses_templated_text(
        self,
        test_settings: Settings,
        essay_question: Question,
        mock_grader: MagicMock,
        grader_response: str,
    ) -> None:
        mock_grader.chat.return_value = grader_response
        orchestrator = GradingOrchestrator(
            test_settings.model_copy(update={"tutor_api_key": None}), grader_client=mock_grader
        )

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"))

        assert feedback.text.startswith("Score: 3/4.")

    @pytest.mark.asyncio
    async def test_tutor_without_model_paragraph_uses_raw_text(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        grader_response: str,
    ) -> None:
        mock_grader.chat.return_value = grader_response
        mock_tutor.generate.return_value = "Good effort, add a quotation."

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"))

        assert feedback.rewrite == "Good effort, add a quotation."

    @pytest.mark.asyncio
    async def test_unparsable_grader_output_is_accepted_as_zero(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
    ) -> None:
        mock_grader.chat.return_value = "This answer is worth three marks."
        mock_tutor.generate.return_value = "Explanation"

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"))

        assert feedback.score == 0
        assert feedback.primary_flaw == DEFAULT_PRIMARY_FLAW
        assert feedback.method == GradingMethod.LLM
        mock_grader.chat.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw_score", [-5, 0, 2, 4, 7, 1000])
    async def test_score_always_within_marks(
        self,
        orchestrator: GradingOrchestrator,
        essay_question: Question,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        raw_score: int,
    ) -> None:
        mock_grader.chat.return_value = json.dumps({"score": raw_score, "primary_flaw": "x"})
        mock_tutor.generate.return_value = "ok"

        feedback = await orchestrator.grade(essay_question, TextAnswer(value="answer"))

        assert 0 <= feedback.score <= essay_question.marks

    @pytest.mark.asyncio
    async def test_health_check_reports_each_provider(
        self, orchestrator: GradingOrchestrator, mock_grader: MagicMock, mock_tutor: MagicMock
    ) -> None:
        mock_grader.health_check.return_value = True
        mock_tutor.health_check.return_value = False

        assert await orchestrator.health_check() == {"grader": True, "tutor": False}

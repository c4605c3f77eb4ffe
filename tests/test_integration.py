"""
Integration tests for a full exam session.

Runs real extraction, parsing, session storage and grading with mocked
provider responses to verify the complete system works together.
"""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mock_examiner.config import Settings
from mock_examiner.gateway import AIProviderGateway
from mock_examiner.grading.engine import AUTO_VERIFIED_TEXT, NO_GRADER_KEY_PREFIX
from mock_examiner.models import GradingMethod, Phase
from mock_examiner.session import ExamSessionStore, JsonFileStore
from mock_examiner.session.flow import ExamFlow


def _build_flow(settings: Settings, grader: MagicMock | None, tutor: MagicMock) -> ExamFlow:
    with patch("mock_examiner.gateway.LLMClient") as mock_client_cls:
        mock_client_cls.for_grader.return_value = grader
        mock_client_cls.for_tutor.return_value = tutor
        gateway = AIProviderGateway(settings)
    store = ExamSessionStore(JsonFileStore(settings.storage_directory), settings.session_key)
    return ExamFlow(store, gateway)


class TestFullExam:
    """Integration tests for the complete exam pipeline."""

    @pytest.mark.asyncio
    async def test_full_exam_session(
        self,
        test_settings: Settings,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        paper_file: Path,
        extraction_response: str,
        grader_response: str,
        tutor_response: str,
    ) -> None:
        """Extract a paper, answer every question and summarize."""
        mock_tutor.generate.side_effect = [extraction_response, tutor_response]
        mock_grader.chat.return_value = grader_response
        flow = _build_flow(test_settings, mock_grader, mock_tutor)

        try:
            # Step 1: Extract the paper
            assert await flow.start_parsing(paper_file, paper_id="english-p1") is True
            assert len(flow.store.questions) == 2

            # Step 2: Short answer hits the marking pattern
            flow.record_answer("Hollows")
            first = await flow.submit_answer()

            assert first.text == AUTO_VERIFIED_TEXT
            assert first.score == 1
            mock_grader.chat.assert_not_awaited()

            # Step 3: Essay answer goes through the grader and tutor
            flow.next()
            flow.record_answer("The storm is described with violent verbs.")
            second = await flow.submit_answer()

            assert second.score == 3
            assert second.total_marks == 8
            assert second.method == GradingMethod.LLM
            assert "pathetic fallacy" in second.rewrite

            # Step 4: Leaving the last question ends the exam
            assert flow.next().is_terminal is True
            assert flow.phase == Phase.SUMMARY
        finally:
            flow.close()

        summary = flow.summary()
        assert summary.total_score == 4
        assert summary.total_possible == 9
        assert summary.percentage == 44
        assert summary.grade == "4"
        assert summary.weakness_counts == {"Limited analysis of language": 1}

    @pytest.mark.asyncio
    async def test_exam_without_grader_key_marks_locally(
        self,
        test_settings: Settings,
        mock_tutor: MagicMock,
        paper_file: Path,
        extraction_response: str,
    ) -> None:
        settings = test_settings.model_copy(update={"grader_api_key": None})
        mock_tutor.generate.return_value = extraction_response
        flow = _build_flow(settings, None, mock_tutor)

        try:
            await flow.start_parsing(paper_file)
            flow.next()
            flow.record_answer("Violent verbs show the storm's power.")
            feedback = await flow.submit_answer()
            hint = await flow.hint()
        finally:
            flow.close()

        assert feedback.method == GradingMethod.LOCAL
        assert feedback.text.startswith(NO_GRADER_KEY_PREFIX)
        assert feedback.score == 0
        assert hint.startswith('• Re-read the provided context: "The storm broke.')
        assert mock_tutor.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_resume_after_restart(
        self,
        test_settings: Settings,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        paper_file: Path,
        extraction_response: str,
    ) -> None:
        """A session written to disk is picked up by a new process."""
        mock_tutor.generate.return_value = extraction_response
        flow = _build_flow(test_settings, mock_grader, mock_tutor)
        try:
            await flow.start_parsing(paper_file, paper_id="english-p1")
            flow.record_answer("hollow")
            await flow.submit_answer()
            flow.skip()
        finally:
            flow.close()

        restarted = _build_flow(test_settings, mock_grader, mock_tutor)
        try:
            assert restarted.resume("english-p1") is True
            assert restarted.store.feedback["1"].score == 1
            assert restarted.store.current_index == 1
            assert restarted.store.skipped == {"1"}
            assert restarted.phase == Phase.EXAM
        finally:
            restarted.close()


class TestEdgeCases:
    """Integration edge cases."""

    @pytest.mark.asyncio
    async def test_scanned_paper_never_reaches_exam(
        self,
        test_settings: Settings,
        mock_grader: MagicMock,
        mock_tutor: MagicMock,
        scanned_paper_file: Path,
    ) -> None:
        flow = _build_flow(test_settings, mock_grader, mock_tutor)

        assert await flow.start_parsing(scanned_paper_file) is False
        assert flow.phase == Phase.UPLOAD
        assert "scanned" in flow.error
        mock_tutor.generate.assert_not_awaited()
        assert not (test_settings.storage_directory / f"{test_settings.session_key}.json").exists()

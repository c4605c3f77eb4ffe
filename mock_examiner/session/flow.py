"""
Exam flow controller.

Drives a paper through upload -> parsing -> exam -> summary, runs the
answer submission procedure and owns the per-second exam timer. Views
call into this instead of mutating the session store themselves.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from mock_examiner.gateway import AIProviderGateway
from mock_examiner.models import (
    ChatMessage,
    ExamSummary,
    Feedback,
    PaperFilePaths,
    Phase,
)
from mock_examiner.paper.validator import AnswerValidator
from mock_examiner.session.store import ExamSessionStore, Navigation
from mock_examiner.session.summary import calculate_summary

logger = logging.getLogger(__name__)


class ExamTimer:
    """Counts elapsed exam seconds on the running event loop."""

    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self.elapsed_seconds = 0
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start ticking. Does nothing if already running or no loop is running."""
        if self.running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; exam timer not started")
            return
        self._task = loop.create_task(self._tick())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def reset(self) -> None:
        self.stop()
        self.elapsed_seconds = 0

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.elapsed_seconds += 1

    @staticmethod
    def format(seconds: int) -> str:
        """Render seconds as m:ss."""
        return f"{seconds // 60}:{seconds % 60:02d}"


class ExamFlow:
    """
    Phase machine and submission procedure for one exam attempt.

    The timer runs only while the phase is ``exam``.
    """

    def __init__(
        self,
        store: ExamSessionStore,
        gateway: AIProviderGateway,
        validator: AnswerValidator | None = None,
        timer: ExamTimer | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.validator = validator or AnswerValidator()
        self.timer = timer or ExamTimer()
        self.phase = Phase.UPLOAD
        self.error: str | None = None
        self._grading: set[str] = set()

    def _set_phase(self, phase: Phase) -> None:
        self.phase = phase
        if phase == Phase.EXAM:
            self.timer.start()
        else:
            self.timer.stop()

    def is_grading(self, question_id: str) -> bool:
        return question_id in self._grading

    # ==========================================================================
    # Starting and Resuming
    # ==========================================================================

    async def start_parsing(
        self,
        paper_path: Path | str,
        scheme_path: Path | str | None = None,
        insert_path: Path | str | None = None,
        paper_id: str | None = None,
    ) -> bool:
        """
        Extract a paper and enter the exam.

        Insert and mark scheme failures are logged and the exam starts
        without them. A question extraction failure returns the flow to
        ``upload`` with `error` set.

        Returns:
            True if the exam started.
        """
        self._set_phase(Phase.PARSING)
        self.error = None
        self.store.reset()

        try:
            extraction = await self.gateway.extract_questions(paper_path, insert_path)
        except Exception as e:
            logger.error("Question extraction failed for %s: %s", paper_path, e)
            self.error = str(e)
            self._set_phase(Phase.UPLOAD)
            return False

        insert_content = None
        if insert_path is not None:
            try:
                insert_content = await self.gateway.extract_insert_content(insert_path)
            except Exception as e:
                logger.warning("Insert extraction failed: %s", e)

        mark_scheme = {}
        if scheme_path is not None:
            try:
                mark_scheme = await self.gateway.parse_mark_scheme(scheme_path)
            except Exception as e:
                logger.warning("Mark scheme parsing failed: %s", e)

        self.store.load_paper(
            extraction.questions,
            mark_scheme=mark_scheme,
            insert_content=insert_content,
            paper_file_paths=PaperFilePaths(
                paper=str(paper_path),
                scheme=str(scheme_path) if scheme_path is not None else None,
                insert=str(insert_path) if insert_path is not None else None,
            ),
            paper_id=paper_id,
        )
        self.timer.reset()
        self._set_phase(Phase.EXAM)
        self.store.persist(self.phase)
        return True

    def resume(self, paper_id: str | None = None) -> bool:
        """
        Resume a stored session, for a specific paper or whatever was last open.

        Returns:
            True if a session was restored and the exam is running.
        """
        if paper_id is None:
            snapshot = self.store.restore()
        else:
            snapshot = self.store.restore_for_paper(paper_id)
        if snapshot is None:
            return False
        self._set_phase(Phase.EXAM)
        return True

    # ==========================================================================
    # Answering
    # ==========================================================================

    def record_answer(self, value: Any) -> None:
        """Record an answer for the current question and persist."""
        question = self.store.current_question
        if question is None:
            return
        self.store.record_answer(question.id, value)
        self.store.persist(self.phase)

    async def submit_answer(self) -> Feedback:
        """
        Grade the current question's answer.

        Validates the answer, removes the question from the skip set, grades
        it, records the feedback and persists.

        Raises:
            AnswerValidationError: If the answer is empty.
            RuntimeError: If no question is active.
        """
        question = self.store.current_question
        if question is None:
            raise RuntimeError("No active question to submit")

        answer = self.store.answers.get(question.id)
        self.validator.validate_or_raise(question, answer)
        self.store.unskip(question.id)

        self._grading.add(question.id)
        try:
            feedback = await self.gateway.mark_question(
                question, answer, self.store.scheme_for(question.id)
            )
        finally:
            self._grading.discard(question.id)

        self.store.record_feedback(question.id, feedback)
        self.store.persist(self.phase)
        return feedback

    def skip(self) -> Navigation:
        question = self.store.current_question
        if question is None:
            return self._finish()
        navigation = self.store.skip(question.id)
        return self._after_navigation(navigation)

    def next(self) -> Navigation:
        return self._after_navigation(self.store.move_to_next())

    def jump_to(self, index: int) -> int | None:
        page = self.store.jump_to(index)
        self.store.persist(self.phase)
        return page

    def _after_navigation(self, navigation: Navigation) -> Navigation:
        if navigation.is_terminal:
            return self._finish()
        self.store.persist(self.phase)
        return navigation

    def _finish(self) -> Navigation:
        self.store.persist(self.phase)
        self._set_phase(Phase.SUMMARY)
        return Navigation(-1, None)

    # ==========================================================================
    # Tutoring
    # ==========================================================================

    async def hint(self) -> str:
        question = self.store.current_question
        if question is None:
            raise RuntimeError("No active question")
        return await self.gateway.get_hint(question, self.store.scheme_for(question.id))

    async def explain(self) -> str:
        """
        Explain the current question's feedback.

        Raises:
            RuntimeError: If the current question has not been graded.
        """
        question = self.store.current_question
        if question is None or question.id not in self.store.feedback:
            raise RuntimeError("Current question has no feedback to explain")
        return await self.gateway.explain_feedback(
            question,
            self.store.answers.get(question.id),
            self.store.feedback[question.id],
            self.store.scheme_for(question.id),
        )

    async def follow_up(self, text: str) -> str:
        """Send a follow-up message about the current graded question."""
        question = self.store.current_question
        if question is None or question.id not in self.store.feedback:
            raise RuntimeError("Current question has no feedback to discuss")

        self.store.append_follow_up(question.id, ChatMessage(role="user", text=text))
        reply = await self.gateway.follow_up(
            question,
            self.store.answers.get(question.id),
            self.store.feedback[question.id],
            list(self.store.follow_up_chats[question.id]),
        )
        self.store.append_follow_up(question.id, ChatMessage(role="assistant", text=reply))
        self.store.persist(self.phase)
        return reply

    # ==========================================================================
    # Summary
    # ==========================================================================

    def summary(self) -> ExamSummary:
        return calculate_summary(self.store.questions, self.store.feedback)

    async def study_plan(self) -> str:
        summary = self.summary()
        return await self.gateway.generate_study_plan(
            summary.percentage, list(summary.weaknesses), summary.question_count
        )

    def reset(self) -> None:
        """Clear the stored session and return to upload."""
        self.store.clear()
        self.store.reset()
        self.timer.reset()
        self.error = None
        self._set_phase(Phase.UPLOAD)

    def close(self) -> None:
        self.timer.stop()

"""
Exam session store.

Holds everything about one in-progress exam attempt (questions, answers,
feedback, navigation, skip set, follow-up chats, quote drafts, mark scheme)
and persists it as a single snapshot in a key-value store.
"""

import logging
from typing import Any, NamedTuple, Sequence

from pydantic import ValidationError

from mock_examiner.grading.evaluator import flatten_answer
from mock_examiner.models import (
    SCALAR_ANSWERS,
    Answer,
    ChatMessage,
    Feedback,
    MarkSchemeEntry,
    PaperFilePaths,
    Phase,
    Question,
    SessionSnapshot,
    TextAnswer,
    coerce_answer,
)
from mock_examiner.session.storage import KeyValueStore, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_SESSION_KEY = "gcse_marker_state"


class Navigation(NamedTuple):
    """Where navigation landed. ``index == -1`` means no questions remain."""

    index: int
    page_number: int | None

    @property
    def is_terminal(self) -> bool:
        return self.index == -1


TERMINAL = Navigation(-1, None)


class ExamSessionStore:
    """
    In-memory exam state with snapshot persistence.

    Mutations never persist on their own; callers call `persist` after a
    change they want to keep. Restoring from storage happens at most once
    per store through `restore`.
    """

    def __init__(self, storage: KeyValueStore, key: str = DEFAULT_SESSION_KEY):
        """
        Initialize an empty store.

        Args:
            storage: Durable key-value storage for snapshots.
            key: Storage key of the snapshot.
        """
        self._storage = storage
        self._key = key
        self._restored = False
        self._clear_state()

    def _clear_state(self) -> None:
        self.questions: list[Question] = []
        self.answers: dict[str, Answer] = {}
        self.feedback: dict[str, Feedback] = {}
        self.current_index = 0
        self.skipped: set[str] = set()
        self.follow_up_chats: dict[str, list[ChatMessage]] = {}
        self.quote_drafts: dict[str, str] = {}
        self.insert_content: str | None = None
        self.mark_scheme: dict[str, MarkSchemeEntry] = {}
        self.paper_file_paths: PaperFilePaths | None = None
        self.paper_id: str | None = None

    # ==========================================================================
    # Loading
    # ==========================================================================

    def load_paper(
        self,
        questions: Sequence[Question],
        mark_scheme: dict[str, MarkSchemeEntry] | None = None,
        insert_content: str | None = None,
        paper_file_paths: PaperFilePaths | None = None,
        paper_id: str | None = None,
    ) -> None:
        """Replace all state with a freshly parsed paper."""
        self._clear_state()
        self.questions = list(questions)
        self.mark_scheme = dict(mark_scheme or {})
        self.insert_content = insert_content
        self.paper_file_paths = paper_file_paths
        self.paper_id = paper_id

    def reset(self) -> None:
        """Drop all in-memory state. Stored snapshots are left alone."""
        self._clear_state()

    # ==========================================================================
    # Lookups
    # ==========================================================================

    def question(self, question_id: str) -> Question:
        """
        Get a loaded question by id.

        Raises:
            KeyError: If no loaded question has that id.
        """
        for question in self.questions:
            if question.id == question_id:
                return question
        raise KeyError(question_id)

    def scheme_for(self, question_id: str) -> MarkSchemeEntry | None:
        return self.mark_scheme.get(question_id)

    @property
    def current_question(self) -> Question | None:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def current_answer(self) -> Answer | None:
        question = self.current_question
        return self.answers.get(question.id) if question else None

    @property
    def has_current_feedback(self) -> bool:
        question = self.current_question
        return question is not None and question.id in self.feedback

    # ==========================================================================
    # Answers and Feedback
    # ==========================================================================

    def record_answer(self, question_id: str, value: Any) -> Answer | None:
        """
        Replace the answer for a question. No content validation happens here.

        Args:
            question_id: Id of a loaded question.
            value: An Answer, or a raw value converted for the question type.
                None removes the answer.

        Returns:
            The stored answer.

        Raises:
            KeyError: If the question is not loaded.
        """
        answer = coerce_answer(self.question(question_id), value)
        if answer is None:
            self.answers.pop(question_id, None)
        else:
            self.answers[question_id] = answer
        return answer

    def record_feedback(self, question_id: str, feedback: Feedback) -> None:
        """Record the grading outcome; this marks the question as done."""
        self.feedback[question_id] = feedback

    def append_follow_up(self, question_id: str, message: ChatMessage) -> None:
        self.follow_up_chats.setdefault(question_id, []).append(message)

    def update_quote_draft(self, question_id: str, text: str) -> None:
        self.quote_drafts[question_id] = text

    def insert_quote_into_answer(self, question_id: str) -> None:
        """
        Append the trimmed quote draft to the answer text as a quoted block
        and clear the draft. Does nothing when the draft is empty.
        """
        quote = self.quote_drafts.get(question_id, "").strip()
        if not quote:
            return

        existing = self.answers.get(question_id)
        if existing is not None and not isinstance(existing, SCALAR_ANSWERS):
            logger.warning("Cannot insert a quote into a %s answer for %s", existing.kind, question_id)
            return

        existing_text = flatten_answer(existing) if existing is not None else ""
        quoted = f'"{quote}"'
        self.answers[question_id] = TextAnswer(
            value=f"{existing_text}\n\n{quoted}" if existing_text else quoted
        )
        self.quote_drafts[question_id] = ""

    # ==========================================================================
    # Navigation
    # ==========================================================================

    def move_to_next(self) -> Navigation:
        """Advance to the next question, or return the terminal signal at the end."""
        if self.current_index < len(self.questions) - 1:
            self.current_index += 1
            return Navigation(self.current_index, self.questions[self.current_index].page_number)
        return TERMINAL

    def skip(self, question_id: str) -> Navigation:
        self.skipped.add(question_id)
        return self.move_to_next()

    def unskip(self, question_id: str) -> None:
        self.skipped.discard(question_id)

    def jump_to(self, index: int) -> int | None:
        """
        Move to a question by position.

        Returns:
            Its page number, if known.

        Raises:
            IndexError: If the index is out of range.
        """
        if not 0 <= index < len(self.questions):
            raise IndexError(f"Question index {index} out of range")
        self.current_index = index
        return self.questions[index].page_number

    # ==========================================================================
    # Persistence
    # ==========================================================================

    def snapshot(self, phase: Phase = Phase.EXAM) -> SessionSnapshot:
        """Capture the current state."""
        return SessionSnapshot(
            phase=phase,
            questions=list(self.questions),
            answers=dict(self.answers),
            feedback=dict(self.feedback),
            current_index=self.current_index,
            skipped=[q.id for q in self.questions if q.id in self.skipped],
            follow_up_chats={k: list(v) for k, v in self.follow_up_chats.items()},
            quote_drafts=dict(self.quote_drafts),
            insert_content=self.insert_content,
            mark_scheme=dict(self.mark_scheme),
            paper_file_paths=self.paper_file_paths,
            paper_id=self.paper_id,
        )

    def persist(self, phase: Phase) -> bool:
        """
        Write a snapshot while an exam with questions is running.

        Storage failures are logged, never raised.

        Returns:
            True if a snapshot was written.
        """
        if phase != Phase.EXAM or not self.questions:
            return False
        try:
            self._storage.set(self._key, self.snapshot(phase).model_dump(mode="json"))
        except PersistenceError as e:
            logger.error("Failed to persist session: %s", e)
            return False
        return True

    def restore(self) -> SessionSnapshot | None:
        """
        Load the stored snapshot into memory, once per store.

        Returns:
            The snapshot, or None if already restored or nothing usable is stored.
        """
        if self._restored:
            return None
        snapshot = self._load_snapshot()
        if snapshot is None:
            return None
        self._apply(snapshot)
        return snapshot

    def has_session_for_paper(self, paper_id: str) -> bool:
        snapshot = self._load_snapshot()
        return snapshot is not None and snapshot.paper_id == paper_id

    def restore_for_paper(self, paper_id: str) -> SessionSnapshot | None:
        """
        Load the stored snapshot only if it belongs to the given paper.

        Returns:
            The snapshot, or None if the stored session is for another paper.
        """
        snapshot = self._load_snapshot()
        if snapshot is None or snapshot.paper_id != paper_id:
            return None
        self._apply(snapshot)
        return snapshot

    def clear(self) -> None:
        """Delete the stored snapshot."""
        try:
            self._storage.remove(self._key)
        except PersistenceError as e:
            logger.error("Failed to clear session: %s", e)

    def _load_snapshot(self) -> SessionSnapshot | None:
        try:
            raw = self._storage.get(self._key)
        except PersistenceError as e:
            logger.error("Failed to read saved session: %s", e)
            return None
        if raw is None:
            return None

        try:
            snapshot = SessionSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.error("Ignoring corrupt saved session: %s", e)
            return None

        return snapshot if snapshot.questions else None

    def _apply(self, snapshot: SessionSnapshot) -> None:
        self._clear_state()
        self.questions = list(snapshot.questions)
        self.answers = dict(snapshot.answers)
        self.feedback = dict(snapshot.feedback)
        self.current_index = min(snapshot.current_index, len(self.questions) - 1)
        self.skipped = set(snapshot.skipped)
        self.follow_up_chats = {k: list(v) for k, v in snapshot.follow_up_chats.items()}
        self.quote_drafts = dict(snapshot.quote_drafts)
        self.insert_content = snapshot.insert_content
        self.mark_scheme = dict(snapshot.mark_scheme)
        self.paper_file_paths = snapshot.paper_file_paths
        self.paper_id = snapshot.paper_id
        self._restored = True

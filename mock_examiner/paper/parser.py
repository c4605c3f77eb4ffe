"""
Paper parser module.

Turns the raw JSON a provider returns for a question paper or a mark scheme
into validated Question and MarkSchemeEntry models. Malformed questions are
dropped, types are inferred when missing, and duplicate ids are renumbered.
"""

import logging
from typing import Any

from pydantic import ValidationError

from mock_examiner.grading.scorer import ResponseParser
from mock_examiner.models import (
    ExtractionResult,
    GraphConfig,
    MarkSchemeEntry,
    PaperMetadata,
    Question,
    QuestionContext,
    QuestionType,
    TableStructure,
)

logger = logging.getLogger(__name__)


class PaperParseError(Exception):
    """Raised when a paper or mark scheme cannot be parsed."""

    def __init__(self, message: str, question_id: str | None = None):
        self.question_id = question_id
        if question_id:
            message = f"Question {question_id}: {message}"
        super().__init__(message)


class PaperParser:
    """
    Normalizes provider output into paper models.

    Accepts either raw response text or already-decoded JSON.
    """

    MIN_MARKS = 1
    MAX_MARKS = 200
    MAX_PAGE = 10_000
    LONG_TEXT_MARKS = 6

    _TYPE_VALUES = frozenset(t.value for t in QuestionType)

    def __init__(self):
        self._response_parser = ResponseParser()

    def parse_extraction(self, data: Any) -> ExtractionResult:
        """
        Parse an extraction response into questions and metadata.

        Args:
            data: Response text or a decoded ``{"metadata", "questions"}`` object.

        Returns:
            ExtractionResult with at least one question.

        Raises:
            PaperParseError: If no usable questions are present.
        """
        if isinstance(data, str):
            data = self._response_parser.parse_json(data)

        if not isinstance(data, dict):
            raise PaperParseError("Extraction result is not a JSON object")

        metadata = self._parse_metadata(data.get("metadata"))

        raw_questions = data.get("questions")
        if not isinstance(raw_questions, list):
            raw_questions = []

        questions: list[Question] = []
        seen: set[str] = set()
        for index, raw in enumerate(raw_questions, start=1):
            question = self.normalize_question(raw, str(index))
            if question is None:
                continue
            # Duplicate ids fall back to the 1-based position
            if question.id in seen:
                question = question.model_copy(update={"id": str(len(questions) + 1)})
            seen.add(question.id)
            questions.append(question)

        if not questions:
            raise PaperParseError("No questions extracted.")

        return ExtractionResult(questions=tuple(questions), metadata=metadata)

    def normalize_question(self, raw: Any, fallback_id: str) -> Question | None:
        """
        Build a Question from one raw entry.

        Returns:
            The question, or None when it has no id or no text.
        """
        if not isinstance(raw, dict):
            return None

        raw_id = raw.get("id")
        question_id = str(raw_id).strip() if raw_id is not None else ""
        question_id = question_id or fallback_id
        text = raw.get("question")
        if not isinstance(text, str) or not text.strip():
            return None

        marks = ResponseParser.coerce_int(raw.get("marks"), self.MIN_MARKS, self.MAX_MARKS)
        page_number = ResponseParser.coerce_int(raw.get("pageNumber"), 1, self.MAX_PAGE)

        fields: dict[str, Any] = {
            "id": question_id,
            "type": self.infer_type(raw),
            "marks": marks if marks is not None else self.MIN_MARKS,
            "section": raw["section"] if isinstance(raw.get("section"), str) else "Section",
            "question": text.strip(),
            "page_number": page_number,
        }

        options = raw.get("options")
        if isinstance(options, list):
            fields["options"] = tuple(str(o) for o in options)

        list_count = ResponseParser.coerce_int(raw.get("listCount"), 1, self.MAX_MARKS)
        if list_count is not None:
            fields["list_count"] = list_count

        fields["table_structure"] = self._sub_model(TableStructure, raw.get("tableStructure"), question_id)
        fields["graph_config"] = self._sub_model(GraphConfig, raw.get("graphConfig"), question_id)
        fields["context"] = self._sub_model(QuestionContext, raw.get("context"), question_id)

        if isinstance(raw.get("relatedFigure"), str):
            fields["related_figure"] = raw["relatedFigure"]
        figure_page = ResponseParser.coerce_int(raw.get("figurePage"), 1, self.MAX_PAGE)
        if figure_page is not None:
            fields["figure_page"] = figure_page
        if isinstance(raw.get("markingRegex"), str) and raw["markingRegex"].strip():
            fields["marking_regex"] = raw["markingRegex"]

        try:
            return Question(**fields)
        except ValidationError as e:
            logger.warning("Dropping malformed question %s: %s", question_id, e)
            return None

    def infer_type(self, raw: dict[str, Any]) -> QuestionType:
        """Use the declared type when known, otherwise guess from the shape."""
        declared = raw.get("type")
        if isinstance(declared, str) and declared in self._TYPE_VALUES:
            return QuestionType(declared)

        if isinstance(raw.get("options"), list) and raw["options"]:
            return QuestionType.MULTIPLE_CHOICE
        if raw.get("tableStructure"):
            return QuestionType.TABLE
        if raw.get("graphConfig"):
            return QuestionType.GRAPH_DRAWING
        list_count = ResponseParser.coerce_int(raw.get("listCount"), 0, self.MAX_MARKS)
        if list_count is not None and list_count > 1:
            return QuestionType.LIST

        marks = ResponseParser.coerce_int(raw.get("marks"), 0, self.MAX_MARKS)
        if marks is not None and marks >= self.LONG_TEXT_MARKS:
            return QuestionType.LONG_TEXT
        return QuestionType.SHORT_TEXT

    def parse_mark_scheme(self, data: Any) -> dict[str, MarkSchemeEntry]:
        """
        Parse a mark scheme response.

        Accepts ``{"markScheme": {...}}`` or the bare id -> entry mapping.

        Raises:
            PaperParseError: If the response is not a JSON object.
        """
        if isinstance(data, str):
            data = self._response_parser.parse_json(data)

        if not isinstance(data, dict):
            raise PaperParseError("Mark scheme is not a JSON object")

        entries = data.get("markScheme", data)
        if not isinstance(entries, dict):
            raise PaperParseError("Mark scheme has no question entries")

        scheme: dict[str, MarkSchemeEntry] = {}
        for question_id, raw in entries.items():
            if not isinstance(raw, dict):
                continue
            total = ResponseParser.coerce_int(raw.get("totalMarks"), 0, self.MAX_MARKS)
            scheme[str(question_id)] = MarkSchemeEntry(
                total_marks=total if total is not None else 0,
                criteria=raw.get("criteria") if isinstance(raw.get("criteria"), list) else (),
                acceptable_answers=(
                    raw.get("acceptableAnswers") if isinstance(raw.get("acceptableAnswers"), list) else ()
                ),
            )
        return scheme

    def _parse_metadata(self, raw: Any) -> PaperMetadata:
        if not isinstance(raw, dict):
            return PaperMetadata()
        fields = dict(raw)
        if "paperNumber" in fields:
            fields["paper_number"] = str(fields.pop("paperNumber"))
        year = ResponseParser.coerce_int(fields.get("year"), 1900, 2200)
        fields["year"] = year
        try:
            return PaperMetadata(**fields)
        except ValidationError as e:
            logger.warning("Ignoring malformed paper metadata: %s", e)
            return PaperMetadata()

    def _sub_model(self, model: type, raw: Any, question_id: str) -> Any:
        if not isinstance(raw, dict):
            return None
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.warning("Ignoring malformed %s on question %s: %s", model.__name__, question_id, e)
            return None

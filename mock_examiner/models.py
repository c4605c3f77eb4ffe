"""
Pydantic models for the Mock Examiner engine.

These models define the schemas for:
- Questions extracted from a paper and their mark scheme entries
- Answers, as a tagged union with one variant per answer shape
- Feedback produced by the grading pipeline
- The persisted exam session snapshot and the end-of-exam summary
"""

from datetime import datetime, timezone
from enum import Enum
from hashlib import sha256
from typing import Annotated, Any, Literal, NamedTuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


# ==============================================================================
# Enumerations
# ==============================================================================


class QuestionType(str, Enum):
    """Answer format a question expects."""

    MULTIPLE_CHOICE = "multiple_choice"
    SHORT_TEXT = "short_text"
    LONG_TEXT = "long_text"
    LIST = "list"
    NUMERICAL = "numerical"
    TABLE = "table"
    GRAPH_DRAWING = "graph_drawing"


class Phase(str, Enum):
    """Phase of the exam flow."""

    UPLOAD = "upload"
    PARSING = "parsing"
    EXAM = "exam"
    SUMMARY = "summary"


class GradingMethod(str, Enum):
    """Pipeline tier that produced a piece of feedback."""

    REGEX = "regex"
    LLM = "llm"
    LOCAL = "local"


# ==============================================================================
# Paper Models
# ==============================================================================


class QuestionContext(BaseModel):
    """Source excerpt a question refers to (e.g. an extract from an insert)."""

    model_config = ConfigDict(frozen=True)

    type: str = "text"
    title: str | None = None
    content: str = ""
    lines: str | None = None


class TableStructure(BaseModel):
    """Column headers and optional pre-filled cells of a table question."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    headers: tuple[str, ...] = ()
    initial_data: tuple[tuple[str | None, ...], ...] = Field(default=(), alias="initialData")


class GraphConfig(BaseModel):
    """Axis labels and ranges of a graph-drawing question."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    x_label: str = Field(default="x", alias="xLabel")
    y_label: str = Field(default="y", alias="yLabel")
    x_min: float = Field(default=0, alias="xMin")
    x_max: float = Field(default=10, alias="xMax")
    y_min: float = Field(default=0, alias="yMin")
    y_max: float = Field(default=10, alias="yMax")


class Question(BaseModel):
    """
    A single question extracted from a paper.

    Immutable once parsed; the id is stable within its paper.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: QuestionType = QuestionType.SHORT_TEXT
    marks: int = Field(..., ge=1, le=200)
    section: str = "Section"
    question: str = Field(..., min_length=1)
    page_number: int | None = Field(default=None, ge=1)
    options: tuple[str, ...] | None = None
    list_count: int | None = Field(default=None, ge=1)
    table_structure: TableStructure | None = None
    graph_config: GraphConfig | None = None
    marking_regex: str | None = None
    context: QuestionContext | None = None
    related_figure: str | None = None
    figure_page: int | None = None


class MarkSchemeEntry(BaseModel):
    """Marking details for one question."""

    model_config = ConfigDict(frozen=True)

    total_marks: int = Field(default=0, ge=0)
    criteria: tuple[str, ...] = ()
    acceptable_answers: tuple[str, ...] = ()

    @field_validator("criteria", "acceptable_answers", mode="before")
    @classmethod
    def drop_blank_points(cls, v: Any) -> Any:
        """Coerce scheme points to strings and drop empty ones."""
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(str(p).strip() for p in v if p is not None and str(p).strip())


class PaperMetadata(BaseModel):
    """Descriptive metadata reported for a paper."""

    model_config = ConfigDict(extra="allow")

    subject: str | None = None
    board: str | None = None
    year: int | None = None
    season: str | None = None
    paper_number: str | None = None


class ExtractionResult(BaseModel):
    """Questions and metadata extracted from a question paper."""

    questions: tuple[Question, ...]
    metadata: PaperMetadata = Field(default_factory=PaperMetadata)
    method: str = "text"


# ==============================================================================
# Answer Models
# ==============================================================================


class TextAnswer(BaseModel):
    """Free text or a chosen option."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    value: str


class NumberAnswer(BaseModel):
    """A numeric answer entered as a number."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["number"] = "number"
    value: int | float


class ListAnswer(BaseModel):
    """An ordered list of short answers."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["list"] = "list"
    items: tuple[str, ...]


class TableAnswer(BaseModel):
    """A grid of cells, row by row."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["table"] = "table"
    rows: tuple[tuple[str, ...], ...]


class GraphPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class GraphLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    x1: float
    y1: float
    x2: float
    y2: float


class GraphAnswer(BaseModel):
    """Points and line segments plotted on a graph question."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["graph"] = "graph"
    points: tuple[GraphPoint, ...] = ()
    lines: tuple[GraphLine, ...] = ()


Answer = Annotated[
    Union[TextAnswer, NumberAnswer, ListAnswer, TableAnswer, GraphAnswer],
    Field(discriminator="kind"),
]

SCALAR_ANSWERS = (TextAnswer, NumberAnswer)


def coerce_answer(question: Question, raw: Any) -> Answer | None:
    """
    Convert a raw value (as entered or as stored) into the answer variant
    matching the question type.

    Args:
        question: The question being answered.
        raw: An answer model, a scalar, a list, a grid or a graph mapping.

    Returns:
        The typed answer, or None when there is nothing to record.
    """
    if raw is None:
        return None
    if isinstance(raw, (TextAnswer, NumberAnswer, ListAnswer, TableAnswer, GraphAnswer)):
        return raw

    if question.type == QuestionType.GRAPH_DRAWING or isinstance(raw, dict):
        data = raw if isinstance(raw, dict) else {}
        return GraphAnswer(
            points=tuple(GraphPoint(**p) for p in data.get("points") or ()),
            lines=tuple(GraphLine(**line) for line in data.get("lines") or ()),
        )

    if isinstance(raw, (list, tuple)):
        if question.type == QuestionType.TABLE or (raw and isinstance(raw[0], (list, tuple))):
            # A flat list is a single row
            rows = raw if not raw or any(isinstance(row, (list, tuple)) for row in raw) else [raw]
            return TableAnswer(
                rows=tuple(
                    tuple("" if cell is None else str(cell) for cell in row)
                    for row in rows
                    if isinstance(row, (list, tuple))
                )
            )
        return ListAnswer(items=tuple("" if item is None else str(item) for item in raw))

    if isinstance(raw, bool):
        return TextAnswer(value=str(raw))
    if isinstance(raw, (int, float)):
        return NumberAnswer(value=raw)
    return TextAnswer(value=str(raw))


# ==============================================================================
# Feedback Models
# ==============================================================================


class Feedback(BaseModel):
    """
    Grading outcome for one question.

    Created once per question by the grading orchestrator.
    """

    model_config = ConfigDict(frozen=True)

    score: int = Field(..., ge=0, description="Marks awarded")
    total_marks: int = Field(..., ge=0, description="Marks available")
    text: str = Field(default="", description="Explanation shown to the student")
    rewrite: str = Field(default="", description="Model answer or paragraph")
    primary_flaw: str | None = Field(
        default=None,
        description="Short label naming the main weakness",
    )
    method: GradingMethod = GradingMethod.LLM
    audit: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_score_range(self) -> "Feedback":
        """Ensure the score never exceeds the available marks."""
        if self.score > self.total_marks:
            raise ValueError(
                f"Score ({self.score}) cannot exceed total marks ({self.total_marks})"
            )
        return self


class ChatMessage(BaseModel):
    """One message of a follow-up conversation about a question."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    text: str


# ==============================================================================
# Session Models
# ==============================================================================


class PaperFilePaths(BaseModel):
    """Where the paper, mark scheme and insert files can be fetched from."""

    model_config = ConfigDict(frozen=True)

    paper: str | None = None
    scheme: str | None = None
    insert: str | None = None


class SessionSnapshot(BaseModel):
    """
    Durable snapshot of one in-progress exam attempt.

    Written while the exam is running and read back to resume it.
    """

    phase: Phase = Phase.EXAM
    questions: list[Question] = Field(default_factory=list)
    answers: dict[str, Answer] = Field(default_factory=dict)
    feedback: dict[str, Feedback] = Field(default_factory=dict)
    current_index: int = Field(default=0, ge=0)
    skipped: list[str] = Field(default_factory=list)
    follow_up_chats: dict[str, list[ChatMessage]] = Field(default_factory=dict)
    quote_drafts: dict[str, str] = Field(default_factory=dict)
    insert_content: str | None = None
    mark_scheme: dict[str, MarkSchemeEntry] = Field(default_factory=dict)
    paper_file_paths: PaperFilePaths | None = None
    paper_id: str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ==============================================================================
# Summary Models
# ==============================================================================


class WeaknessCount(NamedTuple):
    """How often one primary flaw was reported."""

    label: str
    count: int


class ExamSummary(BaseModel):
    """Aggregated result of an exam attempt."""

    model_config = ConfigDict(frozen=True)

    total_score: int
    total_possible: int
    percentage: int
    grade: str
    weaknesses: tuple[WeaknessCount, ...] = ()
    answered: int = 0
    question_count: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def weakness_counts(self) -> dict[str, int]:
        """Weakness histogram as a label -> count mapping."""
        return {w.label: w.count for w in self.weaknesses}


# ==============================================================================
# Document Extraction Models
# ==============================================================================


class ExtractedDocument(BaseModel):
    """
    Result of extracting text from a paper, mark scheme or insert.

    Contains the extracted text and metadata about the source.
    """

    model_config = ConfigDict(frozen=True)

    content: str = Field(..., description="Extracted text content")
    source_path: str = Field(..., description="Path to the source document")
    file_extension: str = Field(..., description="File extension of the source document")
    page_count: int = Field(default=1, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def character_count(self) -> int:
        return len(self.content.strip())

    @computed_field  # type: ignore[prop-decorator]
    @property
    def content_hash(self) -> str:
        """SHA-256 of the content, used to spot re-uploads of the same paper."""
        return sha256(self.content.encode("utf-8")).hexdigest()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_empty(self) -> bool:
        """Check if extracted content is empty or whitespace-only."""
        return self.character_count == 0

"""
Prompt builder for the grading and tutoring providers.

Constructs the chat messages for:
- Strict examiner grading (JSON verdict)
- Tutor explanation with a model paragraph
- Hints, explanations, follow-up replies and study plans
- Question and mark scheme extraction from paper text
"""

import json

from mock_examiner.models import ChatMessage, Feedback, MarkSchemeEntry, Question, WeaknessCount

Message = dict[str, str]


class PromptBuilder:
    """
    Builds provider prompts.

    The grading prompt asks for a single JSON object so the reply can be
    parsed into a bounded score; every other prompt asks for short Markdown.
    """

    GRADER_SYSTEM_PROMPT = """You are a Senior Chief Examiner.
Your job: assign precise marks using the supplied mark scheme. Be strict, never exceed the available marks.

OUTPUT JSON ONLY:
{
  "score": number,
  "max_mark": number,
  "AO_breakdown": { "AO1": string, "AO2": string, "AO3": string },
  "primary_flaw": string
}

Rules:
- score must be an integer from 0..max_mark
- Never award marks not supported by the mark scheme
- If mark scheme is vague, err on the conservative side"""

    HINT_SYSTEM_PROMPT = "Provide a short, exam-specific hint. Do NOT give the full answer."

    EXPLAIN_SYSTEM_PROMPT = (
        "Explain the marking decision briefly in Markdown. "
        "Focus on what was missing relative to the mark scheme."
    )

    FOLLOW_UP_SYSTEM_PROMPT = "Act as a friendly tutor. Keep replies concise and practical."

    STUDY_PLAN_SYSTEM_PROMPT = (
        "Create a concise 3-step revision plan in Markdown that targets the repeated weaknesses listed."
    )

    EXTRACTION_PROMPT = """You are an expert exam paper parser.

You will receive the extracted text of an exam paper with page markers ("--- Page N ---"),
optionally followed by the text of an insert / source booklet.

Extract EVERY question and sub-question. For each question include:
- id (e.g. "1", "2a")
- section
- type: multiple_choice|short_text|long_text|list|numerical|table|graph_drawing
- marks (integer)
- pageNumber (the page where the question starts; use the page marker)
- question (exact full question text)
- options (for multiple choice)
- listCount (for list questions)
- tableStructure (for tables: headers + optional initialData)
- graphConfig (labels and axis min/max if present)
- context (only if an extract/source text is referenced; include a short snippet)
- relatedFigure + figurePage (if the question references a figure/diagram)
- markingRegex (ONLY for 1-mark questions with an unambiguous short answer)

OUTPUT:
Return a single JSON object ONLY (no markdown, no extra text):
{
  "metadata": {"subject": string, "board": string, "year": number, "season": string, "paperNumber": string},
  "questions": [ ... ]
}

IMPORTANT:
- If you are uncertain about a field, omit it instead of guessing.
- Do not invent questions.
- Do not exceed the provided marks."""

    MARK_SCHEME_PROMPT = """You are an expert examiner.

You will receive extracted mark scheme text with page markers.

TASK:
- Build a JSON object mapping question id -> marking details.
- For each question, include:
  - totalMarks (integer)
  - criteria (array of short bullet points describing mark-earning elements)
  - acceptableAnswers (array of short acceptable answers / key phrases)

OUTPUT JSON ONLY:
{ "markScheme": { "1": { "totalMarks": 4, "criteria": [...], "acceptableAnswers": [...] } } }

IMPORTANT:
- Do not guess question ids that do not appear.
- Prefer concise criteria points."""

    @staticmethod
    def scheme_json(scheme: MarkSchemeEntry | None) -> str:
        """Serialize a scheme entry the way the providers expect it."""
        if scheme is None:
            return "{}"
        return json.dumps(
            {
                "totalMarks": scheme.total_marks,
                "criteria": list(scheme.criteria),
                "acceptableAnswers": list(scheme.acceptable_answers),
            }
        )

    @staticmethod
    def build_grading_messages(
        question: Question,
        answer_text: str,
        scheme: MarkSchemeEntry | None,
    ) -> list[Message]:
        """
        Build the strict examiner conversation.

        Args:
            question: The question being graded.
            answer_text: Flattened student answer.
            scheme: Mark scheme entry, if any.

        Returns:
            System and user messages.
        """
        lines = [f"Question ({question.marks} marks): {question.question}"]
        if question.context and question.context.content:
            lines.append(f"Context snippet: {question.context.content}")
        if question.related_figure:
            lines.append(f"Figure: {question.related_figure}")
        lines.append(f"Mark scheme JSON: {PromptBuilder.scheme_json(scheme)}")
        lines.append(f"Student answer: {answer_text or '(no answer)'}")

        return [
            {"role": "system", "content": PromptBuilder.GRADER_SYSTEM_PROMPT},
            {"role": "user", "content": "\n".join(lines)},
        ]

    @staticmethod
    def build_tutor_prompt(
        question: Question,
        answer_text: str,
        scheme: MarkSchemeEntry | None,
        score: int,
        primary_flaw: str,
    ) -> str:
        """Build the tutor prompt that explains a grade and writes a model paragraph."""
        return f"""You are an expert tutor.

STUDENT SCORE: {score}/{question.marks}
PRIMARY WEAKNESS: "{primary_flaw}"

QUESTION: "{question.question}"
MARK SCHEME (JSON): {PromptBuilder.scheme_json(scheme)}

STUDENT ANSWER:
{answer_text or '(no answer)'}

TASK:
1) State the score.
2) Briefly explain why (tie to the mark scheme).
3) Give 2-4 bullet-point improvements.
4) Provide a short "Model Paragraph" that would score higher.

FORMAT:
- Use concise Markdown.
- Put the model paragraph under a heading "Model Paragraph".
- Bold the key improvements inside the model paragraph.
"""

    @staticmethod
    def build_hint_messages(question: Question, scheme: MarkSchemeEntry | None) -> list[Message]:
        context = question.context.content if question.context and question.context.content else "N/A"
        return [
            {"role": "system", "content": PromptBuilder.HINT_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Question: {question.question}\nContext: {context}\n"
                    f"Mark scheme: {PromptBuilder.scheme_json(scheme)}"
                ),
            },
        ]

    @staticmethod
    def build_explanation_messages(
        question: Question,
        answer_text: str,
        feedback: Feedback,
        scheme: MarkSchemeEntry | None,
    ) -> list[Message]:
        return [
            {"role": "system", "content": PromptBuilder.EXPLAIN_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Question: {question.question}\nStudent answer: {answer_text}\n"
                    f"Feedback: {feedback.text}\nMark scheme: {PromptBuilder.scheme_json(scheme)}\n"
                    f"Score: {feedback.score}/{feedback.total_marks}"
                ),
            },
        ]

    @staticmethod
    def build_follow_up_messages(
        question: Question,
        answer_text: str,
        feedback: Feedback,
        history: list[ChatMessage],
    ) -> list[Message]:
        transcript = "\n".join(f"{m.role}: {m.text}" for m in history)
        return [
            {"role": "system", "content": PromptBuilder.FOLLOW_UP_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Question: {question.question}\nStudent answer: {answer_text}\n"
                    f"Feedback: {feedback.text}\nChat so far:\n{transcript}"
                ),
            },
        ]

    @staticmethod
    def build_study_plan_messages(
        percentage: int,
        weaknesses: list[WeaknessCount],
        question_count: int,
    ) -> list[Message]:
        summary = ", ".join(f'"{w.label}" ({w.count}x)' for w in weaknesses)
        return [
            {"role": "system", "content": PromptBuilder.STUDY_PLAN_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Student scored {percentage}%. Repeated weaknesses: "
                    f"{summary or 'Not enough data yet.'}. Total questions: {question_count}."
                ),
            },
        ]

    @staticmethod
    def build_extraction_prompt(paper_text: str, insert_text: str | None = None) -> str:
        combined = f"PAPER TEXT:\n{paper_text}"
        if insert_text:
            combined += f"\n\nINSERT / SOURCE TEXT:\n{insert_text}"
        return f"{PromptBuilder.EXTRACTION_PROMPT}\n\n{combined}"

    @staticmethod
    def build_mark_scheme_prompt(scheme_text: str) -> str:
        return f"{PromptBuilder.MARK_SCHEME_PROMPT}\n\nMARK SCHEME TEXT:\n{scheme_text}"

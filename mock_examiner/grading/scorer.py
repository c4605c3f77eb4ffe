"""
Response parser for provider output.

Pulls structured JSON out of free-form model responses, turns the strict
grader's reply into a bounded verdict, and extracts the model paragraph
from the tutor's markdown.
"""

import json
import math
import re
from typing import Any, NamedTuple


DEFAULT_PRIMARY_FLAW = "Missing analysis or key mark scheme points."


class ResponseParseError(Exception):
    """Raised when a provider response is not valid structured output."""

    def __init__(self, message: str, raw_response: str | None = None):
        self.raw_response = raw_response
        super().__init__(message)


class GraderVerdict(NamedTuple):
    """Score and weakness reported by the strict grader."""

    score: int
    primary_flaw: str
    ao_breakdown: dict[str, str] | None
    parsed: bool


class ResponseParser:
    """
    Parses provider responses.

    Handles:
    1. JSON wrapped in markdown code fences or surrounded by prose
    2. Trailing commas and typographic quotes
    3. Out-of-range or non-numeric scores
    """

    CODE_FENCE = re.compile(r"```(?:json|javascript|js|txt)?", re.IGNORECASE)
    TRAILING_COMMA = re.compile(r",\s*([}\]])")
    MODEL_PARAGRAPH = re.compile(r"Model Paragraph[*_:\-]*\s*(.*)", re.IGNORECASE | re.DOTALL)
    BLANK_LINE = re.compile(r"\n\s*\n")

    def parse_json(self, response: str) -> Any:
        """
        Parse the first JSON object or array in a response.

        Args:
            response: Raw response text.

        Returns:
            The decoded JSON value.

        Raises:
            ResponseParseError: If no valid JSON can be recovered.
        """
        candidate = self.extract_json(response)

        try:
            return json.loads(candidate)
        except json.JSONDecodeError as first_error:
            repaired = self.TRAILING_COMMA.sub(r"\1", candidate)
            repaired = repaired.replace("“", '"').replace("”", '"')
            repaired = repaired.replace("‘", "'").replace("’", "'")
            try:
                return json.loads(repaired)
            except json.JSONDecodeError as e:
                raise ResponseParseError(
                    f"Invalid JSON in response: {first_error}",
                    raw_response=response,
                ) from e

    def extract_json(self, response: str) -> str:
        """
        Extract the first top-level JSON object or array from a response.

        Braces inside string literals are ignored.

        Raises:
            ResponseParseError: If there is no complete JSON value.
        """
        text = self.CODE_FENCE.sub("", response or "").replace("```", "").strip()

        starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
        if not starts:
            raise ResponseParseError("No JSON object found in response", raw_response=response)

        start = min(starts)
        opening = text[start]
        closing = "}" if opening == "{" else "]"

        depth = 0
        in_string = False
        escaped = False

        for i in range(start, len(text)):
            char = text[i]

            if escaped:
                escaped = False
                continue
            if char == "\\":
                escaped = in_string
                continue
            if char == '"':
                in_string = not in_string
                continue
            if in_string:
                continue

            if char == opening:
                depth += 1
            elif char == closing:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]

        raise ResponseParseError("Unclosed JSON object in response", raw_response=response)

    def parse_verdict(self, response: str, max_marks: int) -> GraderVerdict:
        """
        Parse the strict grader's reply.

        An unparsable reply yields a zero score and the default flaw rather
        than an error.
        """
        try:
            data = self.parse_json(response)
        except ResponseParseError:
            return GraderVerdict(0, DEFAULT_PRIMARY_FLAW, None, parsed=False)

        if not isinstance(data, dict):
            return GraderVerdict(0, DEFAULT_PRIMARY_FLAW, None, parsed=False)

        score = self.coerce_int(data.get("score"), minimum=0, maximum=max_marks)

        flaw = data.get("primary_flaw", data.get("primaryFlaw"))
        primary_flaw = flaw.strip() if isinstance(flaw, str) and flaw.strip() else DEFAULT_PRIMARY_FLAW

        breakdown = data.get("AO_breakdown")
        ao_breakdown = (
            {str(k): str(v) for k, v in breakdown.items()} if isinstance(breakdown, dict) else None
        )

        return GraderVerdict(score if score is not None else 0, primary_flaw, ao_breakdown, parsed=True)

    @staticmethod
    def coerce_int(value: Any, minimum: int, maximum: int) -> int | None:
        """Truncate a numeric value to an int and clamp it, or return None."""
        if isinstance(value, bool):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(number):
            return None
        return min(maximum, max(minimum, int(number)))

    def extract_model_paragraph(self, markdown: str | None) -> str | None:
        """
        Take the text under a "Model Paragraph" header, up to the next blank line.

        Returns:
            The paragraph, or None when the header is missing or empty.
        """
        if not markdown:
            return None
        match = self.MODEL_PARAGRAPH.search(markdown)
        if not match:
            return None
        chunk = self.BLANK_LINE.split(match.group(1), maxsplit=1)[0].strip()
        return chunk or None

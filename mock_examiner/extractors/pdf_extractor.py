"""
PDF document extractor using PyMuPDF.

Produces page-by-page text with "--- Page N ---" markers so question
extraction can report the page each question starts on.
"""

import re
from pathlib import Path
from typing import ClassVar

import fitz  # PyMuPDF

from mock_examiner.extractors.base import DocumentExtractor, ExtractionError
from mock_examiner.models import ExtractedDocument

PAGE_MARKER = re.compile(r"^--- Page \d+ ---$", re.MULTILINE)

_WHITESPACE = re.compile(r"\s+")


def page_marker(page_number: int) -> str:
    return f"--- Page {page_number} ---"


def strip_page_markers(text: str) -> str:
    """Remove page markers, leaving only the extracted page text."""
    return PAGE_MARKER.sub("", text).strip()


class PDFExtractor(DocumentExtractor):
    """
    Extracts text content from PDF files.

    Every page gets a marker, even when it has no text, so page numbers
    stay aligned. A scanned PDF therefore yields markers and little else;
    callers decide whether that is enough text to work with.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = (".pdf",)

    def extract(self, file_path: Path) -> ExtractedDocument:
        """
        Extract text from a PDF file.

        Args:
            file_path: Path to the PDF file.

        Returns:
            ExtractedDocument with marked page text.

        Raises:
            ExtractionError: If the PDF cannot be read or has no pages.
        """
        self._validate_file(file_path)

        try:
            pages: list[str] = []

            with fitz.open(file_path) as doc:
                if doc.page_count == 0:
                    raise ExtractionError("PDF has no pages", file_path)

                for page_num, page in enumerate(doc, start=1):
                    page_text = _WHITESPACE.sub(" ", page.get_text("text")).strip()
                    pages.append(f"{page_marker(page_num)}\n{page_text}")

            return self._create_result("\n\n".join(pages), file_path, page_count=len(pages))

        except fitz.FileDataError as e:
            raise ExtractionError("PDF file is corrupted or invalid", file_path, cause=e) from e
        except fitz.EmptyFileError as e:
            raise ExtractionError("PDF file is empty", file_path, cause=e) from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Unexpected error: {e}", file_path, cause=e) from e

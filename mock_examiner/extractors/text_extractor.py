"""
Plain text document extractor.

Lets already-extracted papers and mark schemes (.txt, .md) skip the PDF step.
"""

from pathlib import Path
from typing import ClassVar

from mock_examiner.extractors.base import DocumentExtractor, ExtractionError
from mock_examiner.extractors.pdf_extractor import page_marker
from mock_examiner.models import ExtractedDocument


class TextExtractor(DocumentExtractor):
    """
    Extracts text from plain text files.

    Form feeds are treated as page breaks; the result carries the same page
    markers as PDF extraction.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = (".txt", ".md")

    ENCODINGS: ClassVar[tuple[str, ...]] = ("utf-8", "utf-8-sig", "latin-1")

    def extract(self, file_path: Path) -> ExtractedDocument:
        self._validate_file(file_path)

        content = self._read_with_encoding_fallback(file_path)
        pages = content.split("\f")
        marked = "\n\n".join(
            f"{page_marker(number)}\n{text.strip()}" for number, text in enumerate(pages, start=1)
        )
        return self._create_result(marked, file_path, page_count=len(pages))

    def _read_with_encoding_fallback(self, file_path: Path) -> str:
        """
        Read file content, trying each encoding in turn.

        Raises:
            ExtractionError: If no encoding works.
        """
        last_error: Exception | None = None

        for encoding in self.ENCODINGS:
            try:
                return file_path.read_text(encoding=encoding)
            except UnicodeDecodeError as e:
                last_error = e

        raise ExtractionError(
            f"Could not decode file with any supported encoding: {self.ENCODINGS}",
            file_path,
            cause=last_error,
        )

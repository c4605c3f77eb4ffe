"""
Base classes for document extraction.

Defines the interface every extractor implements so papers, mark schemes
and inserts are read the same way regardless of file format.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import ClassVar

from mock_examiner.models import ExtractedDocument


class ExtractionError(Exception):
    """
    Raised when a document cannot be read.

    Carries the path and the underlying cause.
    """

    def __init__(self, message: str, file_path: str | Path, cause: Exception | None = None):
        self.file_path = str(file_path)
        self.cause = cause
        super().__init__(f"Failed to extract '{file_path}': {message}")


class DocumentExtractor(ABC):
    """
    Abstract base class for document extractors.

    Subclasses implement `extract` and list their file extensions in
    `SUPPORTED_EXTENSIONS`.
    """

    SUPPORTED_EXTENSIONS: ClassVar[tuple[str, ...]] = ()

    # Upload limit for a single paper, scheme or insert
    MAX_FILE_BYTES: ClassVar[int] = 25 * 1024 * 1024

    @classmethod
    def supports(cls, file_path: Path) -> bool:
        return file_path.suffix.lower() in cls.SUPPORTED_EXTENSIONS

    @abstractmethod
    def extract(self, file_path: Path) -> ExtractedDocument:
        """
        Extract text content from the document.

        Args:
            file_path: Path to the document file.

        Returns:
            ExtractedDocument containing the text and page count.

        Raises:
            ExtractionError: If the file cannot be read.
        """
        ...

    def _validate_file(self, file_path: Path) -> None:
        """
        Check that the file exists, is supported and is not too large.

        Raises:
            ExtractionError: If any check fails.
        """
        if not file_path.exists():
            raise ExtractionError("File does not exist", file_path)

        if not file_path.is_file():
            raise ExtractionError("Path is not a file", file_path)

        if not self.supports(file_path):
            raise ExtractionError(
                f"Unsupported file format. Expected one of: {self.SUPPORTED_EXTENSIONS}",
                file_path,
            )

        if file_path.stat().st_size > self.MAX_FILE_BYTES:
            raise ExtractionError(f"File is larger than {self.MAX_FILE_BYTES} bytes", file_path)

    def _create_result(self, content: str, file_path: Path, page_count: int = 1) -> ExtractedDocument:
        return ExtractedDocument(
            content=content,
            source_path=str(file_path.resolve()),
            file_extension=file_path.suffix.lower(),
            page_count=page_count,
        )

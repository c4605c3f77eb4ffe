"""
Extractor factory module.

Selects the extractor for a file by extension.
"""

from pathlib import Path

from mock_examiner.extractors.base import DocumentExtractor, ExtractionError
from mock_examiner.extractors.pdf_extractor import PDFExtractor
from mock_examiner.extractors.text_extractor import TextExtractor
from mock_examiner.models import ExtractedDocument

_EXTRACTORS: tuple[type[DocumentExtractor], ...] = (
    PDFExtractor,
    TextExtractor,
)


def get_supported_extensions() -> tuple[str, ...]:
    extensions: list[str] = []
    for extractor_cls in _EXTRACTORS:
        extensions.extend(extractor_cls.SUPPORTED_EXTENSIONS)
    return tuple(sorted(set(extensions)))


def create_extractor(file_path: Path | str) -> DocumentExtractor:
    """
    Create the extractor for a given file.

    Raises:
        ExtractionError: If the file format is not supported.
    """
    path = Path(file_path)
    extension = path.suffix.lower()

    for extractor_cls in _EXTRACTORS:
        if extension in extractor_cls.SUPPORTED_EXTENSIONS:
            return extractor_cls()

    raise ExtractionError(
        f"Unsupported file format '{extension}'. Supported formats: {get_supported_extensions()}",
        path,
    )


def extract_document(file_path: Path | str) -> ExtractedDocument:
    """
    Extract text from a paper, mark scheme or insert file.

    Raises:
        ExtractionError: If extraction fails.
    """
    path = Path(file_path)
    return create_extractor(path).extract(path)

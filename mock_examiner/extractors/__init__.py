"""
Document Extraction Module.

Reads question papers, mark schemes and inserts as page-marked text:
- PDF (.pdf)
- Plain text (.txt, .md)
"""

from mock_examiner.extractors.base import DocumentExtractor, ExtractionError
from mock_examiner.extractors.factory import create_extractor, extract_document
from mock_examiner.extractors.pdf_extractor import strip_page_markers

__all__ = [
    "DocumentExtractor",
    "ExtractionError",
    "create_extractor",
    "extract_document",
    "strip_page_markers",
]

"""
Exam Session Module.

Session state, snapshot storage, the exam flow controller and the summary
calculator.
"""

from mock_examiner.session.storage import InMemoryStore, JsonFileStore, KeyValueStore, PersistenceError
from mock_examiner.session.store import ExamSessionStore, Navigation
from mock_examiner.session.summary import calculate_summary, grade_for_percentage, weakness_histogram

__all__ = [
    "ExamSessionStore",
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "Navigation",
    "PersistenceError",
    "calculate_summary",
    "grade_for_percentage",
    "weakness_histogram",
]

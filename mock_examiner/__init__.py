"""
Mock Examiner - exam sessions with tiered automatic grading.

This package runs a student through a mock exam built from an uploaded
question paper and mark scheme, grading each answer with a regex fast
path, a strict AI grader, an AI tutor and a deterministic local fallback.
"""

__version__ = "1.0.0"
__author__ = "Mock Examiner Team"

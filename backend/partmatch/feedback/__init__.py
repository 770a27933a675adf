"""Feedback module for the matching learning loop

This module handles:
- Reviewer decisions (approvals become training examples and aliases)
- Decision audit logging
- Explicit competitor alias administration
- Training data CSV import
"""

from .services import LearningFeedbackSink, ReportedScores
from .import_service import TrainingImportService

__all__ = [
    "LearningFeedbackSink",
    "ReportedScores",
    "TrainingImportService",
]

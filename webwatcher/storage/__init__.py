"""Storage modules for WebWatcher."""

from .database import Database
from .models import FeedbackRecord, FeedbackStats, IncidentReport, Judgment

__all__ = ["Database", "FeedbackRecord", "FeedbackStats", "IncidentReport", "Judgment"]

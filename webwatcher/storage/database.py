"""SQLite incident store for WebWatcher."""

from __future__ import annotations

from .db.base import DatabaseBase
from .db.feedback import FeedbackMixin
from .db.incidents import IncidentsMixin


class Database(IncidentsMixin, FeedbackMixin, DatabaseBase):
    """Async SQLite store for incidents and feedback.

    All statements run on one connection behind an asyncio.Lock, so
    concurrent scans never interleave a read-modify-write.
    """

"""Incident persistence (append-only)."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from ...errors import DuplicateIncidentError
from ..models import IncidentReport

logger = logging.getLogger(__name__)


class IncidentsMixin:
    """Create-if-absent writes and lookups for incident reports."""

    async def save_incident(self, report: IncidentReport) -> None:
        """Insert a report; an existing id is never overwritten."""
        payload = self._dumps(report.to_dict())
        assessment = report.risk_assessment
        async with self._lock:
            try:
                await self._connection.execute(
                    """
                    INSERT INTO incidents
                        (id, timestamp, url, overall_score, verdict, category, siem_ready, payload)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        report.id,
                        report.timestamp,
                        report.url,
                        assessment.overall_score,
                        assessment.verdict.value,
                        report.metadata.get("category"),
                        report.siem_ready,
                        payload,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                logger.error("Incident id collision for %s", report.id)
                raise DuplicateIncidentError(report.id) from exc
            await self._connection.commit()

    async def get_incident(self, incident_id: str) -> Optional[IncidentReport]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT payload FROM incidents WHERE id = ?", (incident_id,)
            )
            row = await self._fetchone_dict(cursor)
        if not row:
            return None
        return IncidentReport.from_dict(json.loads(row["payload"]))

    async def incident_exists(self, incident_id: str) -> bool:
        async with self._lock:
            return await self._incident_exists_unlocked(incident_id)

    async def _incident_exists_unlocked(self, incident_id: str) -> bool:
        cursor = await self._connection.execute(
            "SELECT 1 FROM incidents WHERE id = ? LIMIT 1", (incident_id,)
        )
        return (await cursor.fetchone()) is not None

    async def recent_incidents(self, limit: int = 10) -> list[IncidentReport]:
        """Newest first; ids sort by creation time."""
        limit = max(1, min(int(limit), 100))
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT payload FROM incidents ORDER BY id DESC LIMIT ?", (limit,)
            )
            rows = await self._fetchall_dicts(cursor)
        return [IncidentReport.from_dict(json.loads(row["payload"])) for row in rows]

    async def count_incidents(self) -> int:
        async with self._lock:
            cursor = await self._connection.execute("SELECT COUNT(*) AS count FROM incidents")
            return (await cursor.fetchone())["count"]

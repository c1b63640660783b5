"""Feedback persistence and accuracy statistics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ...errors import UnknownIncident
from ..models import FeedbackRecord, FeedbackStats, Judgment


class FeedbackMixin:
    """Append-only human judgments tied to incidents."""

    async def record_feedback(
        self,
        incident_id: str,
        judgment: Judgment | str,
        comment: Optional[str] = None,
    ) -> FeedbackRecord:
        judgment = judgment if isinstance(judgment, Judgment) else Judgment.parse(judgment)
        created_at = datetime.now(timezone.utc).isoformat()
        async with self._lock:
            # Existence check and insert share the lock, so no incident can vanish in between.
            if not await self._incident_exists_unlocked(incident_id):
                raise UnknownIncident(incident_id)
            cursor = await self._connection.execute(
                """
                INSERT INTO feedback (incident_id, judgment, comment, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (incident_id, judgment.value, comment, created_at),
            )
            await self._connection.commit()
            feedback_id = cursor.lastrowid

        return FeedbackRecord(
            id=feedback_id,
            incident_id=incident_id,
            judgment=judgment,
            comment=comment,
            created_at=created_at,
        )

    async def feedback_for_incident(self, incident_id: str) -> list[FeedbackRecord]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM feedback WHERE incident_id = ? ORDER BY id", (incident_id,)
            )
            rows = await self._fetchall_dicts(cursor)
        return [
            FeedbackRecord(
                id=row["id"],
                incident_id=row["incident_id"],
                judgment=Judgment(row["judgment"]),
                comment=row["comment"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def compute_stats(self, window: int = 50) -> FeedbackStats:
        """Counts per judgment plus overall and rolling accuracy."""
        window = max(1, int(window))
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT judgment, COUNT(*) AS count FROM feedback GROUP BY judgment"
            )
            grouped = {row["judgment"]: row["count"] for row in await cursor.fetchall()}
            cursor = await self._connection.execute(
                "SELECT judgment FROM feedback ORDER BY id DESC LIMIT ?", (window,)
            )
            recent = [row["judgment"] for row in await cursor.fetchall()]

        counts = {j.value: int(grouped.get(j.value, 0)) for j in Judgment}
        total = sum(counts.values())
        accuracy = round(counts[Judgment.CORRECT.value] / total, 4) if total else None
        rolling = (
            round(sum(1 for j in recent if j == Judgment.CORRECT.value) / len(recent), 4)
            if recent
            else None
        )
        return FeedbackStats(
            counts=counts,
            total=total,
            accuracy=accuracy,
            rolling_accuracy=rolling,
            window=window,
        )

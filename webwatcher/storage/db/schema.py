"""Database schema creation helpers."""

from __future__ import annotations

import sqlite3


class DatabaseSchemaMixin:
    """Database schema creation helpers."""

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._lock:
            await self._connection.executescript(
                """
                    CREATE TABLE IF NOT EXISTS incidents (
                        id TEXT PRIMARY KEY,
                        timestamp TEXT NOT NULL,
                        url TEXT NOT NULL,
                        overall_score INTEGER NOT NULL,
                        verdict TEXT NOT NULL,
                        category TEXT,
                        siem_ready BOOLEAN DEFAULT FALSE,
                        payload TEXT NOT NULL
                    );

                    CREATE TABLE IF NOT EXISTS feedback (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        incident_id TEXT NOT NULL,
                        judgment TEXT NOT NULL
                            CHECK (judgment IN ('correct', 'false_positive', 'false_negative')),
                        comment TEXT,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (incident_id) REFERENCES incidents(id)
                    );
                """
            )
            await self._connection.commit()
        await self._create_indexes()

    async def _create_indexes(self) -> None:
        """Create indexes (best-effort, safe for older DBs)."""
        statements = [
            "CREATE INDEX IF NOT EXISTS idx_incidents_timestamp ON incidents(timestamp)",
            "CREATE INDEX IF NOT EXISTS idx_incidents_verdict ON incidents(verdict)",
            "CREATE INDEX IF NOT EXISTS idx_feedback_incident ON feedback(incident_id)",
        ]

        async with self._lock:
            for stmt in statements:
                try:
                    await self._connection.execute(stmt)
                except sqlite3.OperationalError:
                    continue
            await self._connection.commit()

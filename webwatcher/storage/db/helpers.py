"""Database row conversion helpers."""

from __future__ import annotations

import json
from typing import Optional


class DatabaseFetchMixin:
    """Row conversion helpers."""

    async def _fetchone_dict(self, cursor) -> Optional[dict]:
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def _fetchall_dicts(self, cursor) -> list[dict]:
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    @staticmethod
    def _dumps(payload: dict) -> str:
        # sort_keys keeps stored payloads byte-stable for the same record
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

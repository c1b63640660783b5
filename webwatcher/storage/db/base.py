"""Core database setup."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

from .helpers import DatabaseFetchMixin
from .schema import DatabaseSchemaMixin

logger = logging.getLogger(__name__)


class DatabaseBase(DatabaseSchemaMixin, DatabaseFetchMixin):
    """Shared connection and core helpers."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self):
        """Establish database connection and create tables."""
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        # Best-effort: in-memory databases and some SQLite builds reject WAL.
        try:
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA busy_timeout=5000")
            await self._connection.commit()
        except sqlite3.Error as exc:
            logger.debug("SQLite pragmas rejected: %s", exc)
        await self._connection.execute("PRAGMA foreign_keys=ON")
        await self._create_tables()

    async def close(self):
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

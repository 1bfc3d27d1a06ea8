"""SQLite persistence for finalized sessions."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from zenfocus.focus.models import Session

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    phase TEXT NOT NULL,
    start_time DATETIME NOT NULL,
    end_time DATETIME,
    planned_duration REAL NOT NULL,
    actual_duration REAL,
    completed BOOLEAN DEFAULT FALSE,
    stress_level TEXT,
    average_heart_rate REAL,
    focus_score INTEGER,
    notes TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time);
"""

_COLUMNS = (
    "id",
    "phase",
    "start_time",
    "end_time",
    "planned_duration",
    "actual_duration",
    "completed",
    "stress_level",
    "average_heart_rate",
    "focus_score",
    "notes",
)


class SessionStore:
    """Stores the session log in SQLite (WAL mode).

    Load failures never propagate: an unreadable database means "no prior
    data", and an undecodable row is skipped.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open the database and create the schema."""
        if self._connection is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA)
        async with self._connection.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0
        if current_version < SCHEMA_VERSION:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )

        logger.info(f"Session store connected: {self.db_path}")

    async def close(self) -> None:
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Session store closed")

    async def save(self, session: Session) -> bool:
        """Insert or replace a session. Returns False if the write failed."""
        if self._connection is None:
            logger.warning("Session store not connected, cannot save")
            return False

        data = session.to_dict()
        placeholders = ", ".join("?" * len(_COLUMNS))
        query = f"INSERT OR REPLACE INTO sessions ({', '.join(_COLUMNS)}) VALUES ({placeholders})"
        try:
            async with self._lock:
                await self._connection.execute(query, tuple(data[c] for c in _COLUMNS))
        except sqlite3.Error as e:
            logger.error(f"Failed to save session {session.id}: {e}")
            return False
        return True

    async def load_day(self, day: date | None = None) -> list[Session]:
        """Sessions that started on `day` (default today)."""
        day = day or date.today()
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)
        return await self._load(
            "SELECT * FROM sessions WHERE start_time >= ? AND start_time < ? ORDER BY start_time",
            (start.isoformat(), end.isoformat()),
        )

    async def load_all(self) -> list[Session]:
        return await self._load("SELECT * FROM sessions ORDER BY start_time")

    async def _load(self, query: str, params: tuple[Any, ...] = ()) -> list[Session]:
        if self._connection is None:
            logger.warning("Session store not connected, treating as empty")
            return []

        try:
            async with self._connection.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to read sessions: {e}")
            return []

        sessions = []
        for row in rows:
            try:
                sessions.append(Session.from_dict(dict(row)))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping undecodable session row: {e}")
        return sessions

"""SQLite key-value store backing the persistence adapter."""

from datetime import datetime
from pathlib import Path

import aiosqlite

from memblocks.core.logging import get_logger
from memblocks.memory.base import KeyValueBackend, PersistenceError

logger = get_logger("memory.store")

SCHEMA = """
-- Serialized memory snapshots, one row per subject/store key
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class SQLiteKeyValueStore(KeyValueBackend):
    """SQLite-backed key-value storage."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self.db_path)
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to key-value store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError("Key-value store not connected. Call connect() first.")
        return self._conn

    async def get(self, key: str) -> str | None:
        """Get stored value."""
        async with self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        """Insert or overwrite value."""
        now = datetime.now().isoformat()
        await self.conn.execute(
            """INSERT INTO kv (key, value, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at""",
            (key, value, now),
        )
        await self.conn.commit()

    async def remove(self, key: str) -> None:
        """Delete key."""
        await self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        await self.conn.commit()

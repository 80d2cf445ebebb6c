"""Database connection and schema for feeder.

This module owns the async SQLite connection shared by the feed repository
and the notification cache. One Database is created at startup and passed to
both; there is no module-level connection.
"""

import asyncio
from pathlib import Path
from typing import Optional, Union

import aiosqlite

from feeder.errors import StorageError


MEMORY = ":memory:"


class Database:
    """Async SQLite connection holder."""

    def __init__(self, path: Union[str, Path] = MEMORY):
        self.path = path
        self._connection: Optional[aiosqlite.Connection] = None
        # Every write and its commit or rollback runs under this lock
        self.write_lock = asyncio.Lock()

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise StorageError("Database is not connected")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> "Database":
        """Open the connection and make sure the schema exists.

        Returns:
            self, so callers can write ``db = await Database(path).connect()``
        """
        if self._connection is not None:
            return self

        if str(self.path) != MEMORY:
            # Ensure directory exists
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._connection = await aiosqlite.connect(self.path)
            self._connection.row_factory = aiosqlite.Row
            await init_database(self._connection)
        except aiosqlite.Error as e:
            raise StorageError(f"Could not open database at {self.path}: {e}") from e

        return self

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def __aenter__(self) -> "Database":
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


async def init_database(db: aiosqlite.Connection) -> None:
    """Initialize database tables if they don't exist.

    Args:
        db: Open database connection
    """
    await db.execute("PRAGMA foreign_keys = ON")

    await db.execute("""
        CREATE TABLE IF NOT EXISTS feeds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            original_url TEXT NOT NULL UNIQUE,
            resolved_feed_url TEXT,
            title TEXT,
            source_type TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS notified_articles (
            feed_title TEXT NOT NULL,
            article_id TEXT NOT NULL,
            notified_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (feed_title, article_id)
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_notified_articles_feed_title
        ON notified_articles(feed_title)
    """)

    await db.commit()

"""Feed repository.

Persists FeedRecord rows in the ``feeds`` table.
"""

from datetime import datetime
from typing import List, Optional

import aiosqlite

from feeder.errors import FeedAlreadyExists, FeedNotFound, StorageError
from feeder.models.schemas import FeedRecord, SourceType
from feeder.storage.database import Database


_COLUMNS = "id, original_url, resolved_feed_url, title, source_type, created_at"


def _row_to_feed(row: aiosqlite.Row) -> FeedRecord:
    return FeedRecord(
        id=row["id"],
        original_url=row["original_url"],
        resolved_feed_url=row["resolved_feed_url"],
        title=row["title"],
        source_type=SourceType.parse(row["source_type"]),
        created_at=datetime.fromisoformat(row["created_at"])
        if row["created_at"]
        else None,
    )


class FeedRepository:
    """CRUD operations on configured feeds."""

    def __init__(self, database: Database):
        self.database = database

    async def list_feeds(self) -> List[FeedRecord]:
        """List all feeds, oldest first."""
        db = self.database.connection
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM feeds ORDER BY created_at, id"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to list feeds: {e}") from e

        return [_row_to_feed(row) for row in rows]

    async def add(self, url: str) -> FeedRecord:
        """Add a new, unresolved feed.

        Args:
            url: Original URL as entered by the user

        Returns:
            The created FeedRecord

        Raises:
            FeedAlreadyExists: If a feed with the same URL already exists
        """
        db = self.database.connection
        async with self.database.write_lock:
            try:
                cursor = await db.execute(
                    "INSERT INTO feeds (original_url) VALUES (?)",
                    (url,),
                )
                await db.commit()
            except aiosqlite.IntegrityError as e:
                raise FeedAlreadyExists(f"Feed already exists: {url}") from e
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to add feed {url}: {e}") from e

        feed = await self.get(cursor.lastrowid)
        if feed is None:
            raise StorageError(f"Feed {url} vanished after insert")
        return feed

    async def remove(self, feed_id: int) -> bool:
        """Remove a feed.

        Notification keys are left in place so that re-adding the same feed
        does not notify its backlog again.

        Returns:
            True if a feed was deleted
        """
        db = self.database.connection
        async with self.database.write_lock:
            try:
                cursor = await db.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
                await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to remove feed {feed_id}: {e}") from e

        return cursor.rowcount > 0

    async def update_resolution(
        self,
        feed_id: int,
        resolved_feed_url: Optional[str],
        title: Optional[str],
        source_type: Optional[SourceType],
    ) -> Optional[FeedRecord]:
        """Fill in resolution fields that are still unset.

        Values that are already stored are kept: a feed is resolved at most
        once, and its title is fixed by the first successful fetch.

        Returns:
            The updated FeedRecord, or None if the feed does not exist
        """
        db = self.database.connection
        async with self.database.write_lock:
            try:
                await db.execute(
                    """
                    UPDATE feeds
                    SET resolved_feed_url = COALESCE(resolved_feed_url, ?),
                        title = COALESCE(title, ?),
                        source_type = COALESCE(source_type, ?)
                    WHERE id = ?
                    """,
                    (
                        resolved_feed_url,
                        title,
                        source_type.value if source_type else None,
                        feed_id,
                    ),
                )
                await db.commit()
            except aiosqlite.Error as e:
                raise StorageError(f"Failed to update feed {feed_id}: {e}") from e

        return await self.get(feed_id)

    async def get(self, feed_id: int) -> Optional[FeedRecord]:
        """Get a feed by its id."""
        return await self._fetch_one("id = ?", (feed_id,))

    async def require(self, feed_id: int) -> FeedRecord:
        """Get a feed by its id, raising FeedNotFound if it does not exist."""
        feed = await self.get(feed_id)
        if feed is None:
            raise FeedNotFound(f"Feed with id {feed_id} not found")
        return feed

    async def get_by_url(self, url: str) -> Optional[FeedRecord]:
        """Get a feed by its original URL."""
        return await self._fetch_one("original_url = ?", (url,))

    async def exists(self, url: str) -> bool:
        return await self.get_by_url(url) is not None

    async def _fetch_one(self, where: str, params: tuple) -> Optional[FeedRecord]:
        db = self.database.connection
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM feeds WHERE {where}", params
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read feed: {e}") from e

        if row is None:
            return None
        return _row_to_feed(row)

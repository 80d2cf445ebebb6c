"""Notification cache.

The persisted set of (feed_title, article_id) keys that have already been
notified. Presence of a key means the article is never notified again.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Set

import aiosqlite

from feeder.errors import StorageError
from feeder.models.schemas import Article, NotifiedArticleKey
from feeder.storage.database import Database


logger = logging.getLogger(__name__)

# Stay well below SQLite's bound-parameter limit
_CHUNK_SIZE = 500


def _unique_by_id(articles: Iterable[Article]) -> List[Article]:
    seen: Set[str] = set()
    unique = []
    for article in articles:
        if article.article_id in seen:
            continue
        seen.add(article.article_id)
        unique.append(article)
    return unique


class NotificationCache:
    """Dedup engine backed by the ``notified_articles`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def filter_new(self, feed_title: str, articles: List[Article]) -> List[Article]:
        """Return the articles whose key is not yet recorded.

        Pure read. Duplicate article ids within ``articles`` are collapsed to
        their first occurrence; input order is otherwise preserved.

        Raises:
            StorageError: If the cache cannot be read
        """
        candidates = _unique_by_id(articles)
        if not candidates:
            return []

        known = await self._existing_ids(feed_title, [a.article_id for a in candidates])
        return [a for a in candidates if a.article_id not in known]

    async def mark_seen(self, feed_title: str, articles: List[Article]) -> int:
        """Record articles as notified.

        Inserting a key that is already present is a no-op.

        Returns:
            Number of keys actually inserted
        """
        if not articles:
            return 0

        db = self.database.connection
        rows = [(feed_title, a.article_id) for a in _unique_by_id(articles)]

        async with self.database.write_lock:
            try:
                before = db.total_changes
                await db.executemany(
                    """
                    INSERT OR IGNORE INTO notified_articles (feed_title, article_id)
                    VALUES (?, ?)
                    """,
                    rows,
                )
                inserted = db.total_changes - before
                await db.commit()
            except aiosqlite.Error as e:
                await self._rollback()
                raise StorageError(
                    f"Failed to record {len(rows)} articles for {feed_title}: {e}"
                ) from e

        return inserted

    async def contains(self, feed_title: str, article_id: str) -> bool:
        known = await self._existing_ids(feed_title, [article_id])
        return article_id in known

    async def count(self, feed_title: Optional[str] = None) -> int:
        """Number of recorded keys, optionally for a single feed title."""
        db = self.database.connection
        query = "SELECT COUNT(*) AS count FROM notified_articles"
        params: tuple = ()
        if feed_title is not None:
            query += " WHERE feed_title = ?"
            params = (feed_title,)

        try:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to count notified articles: {e}") from e

        return row["count"]

    async def keys(self, feed_title: str) -> List[NotifiedArticleKey]:
        """Recorded keys for a feed title, oldest first."""
        db = self.database.connection
        try:
            cursor = await db.execute(
                """
                SELECT feed_title, article_id, notified_at FROM notified_articles
                WHERE feed_title = ?
                ORDER BY notified_at, rowid
                """,
                (feed_title,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read notified articles: {e}") from e

        return [
            NotifiedArticleKey(
                feed_title=row["feed_title"],
                article_id=row["article_id"],
                notified_at=datetime.fromisoformat(row["notified_at"])
                if row["notified_at"]
                else None,
            )
            for row in rows
        ]

    async def _existing_ids(self, feed_title: str, article_ids: List[str]) -> Set[str]:
        db = self.database.connection
        existing: Set[str] = set()

        try:
            for start in range(0, len(article_ids), _CHUNK_SIZE):
                chunk = article_ids[start:start + _CHUNK_SIZE]
                placeholders = ",".join("?" * len(chunk))
                cursor = await db.execute(
                    f"""
                    SELECT article_id FROM notified_articles
                    WHERE feed_title = ? AND article_id IN ({placeholders})
                    """,
                    [feed_title] + chunk,
                )
                async for row in cursor:
                    existing.add(row["article_id"])
        except aiosqlite.Error as e:
            raise StorageError(f"Failed to read notification cache: {e}") from e

        return existing

    async def _rollback(self) -> None:
        try:
            await self.database.connection.rollback()
        except aiosqlite.Error as e:
            logger.warning(f"Rollback failed: {e}")

"""Application context.

The AppContext is built once at process start and carries the configuration
and the storage components every command needs.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from feeder.config import FeederConfig
from feeder.services.feed_parser import FeedFetcher
from feeder.services.notifier import NotebrookDispatcher, NotificationDispatcher
from feeder.services.orchestrator import Orchestrator
from feeder.services.source_resolver import SourceResolver
from feeder.storage.cache import NotificationCache
from feeder.storage.database import Database
from feeder.storage.feeds import FeedRepository


@dataclass
class AppContext:
    """Configuration plus the components built from it."""

    config: FeederConfig
    database: Database
    feeds: FeedRepository
    cache: NotificationCache
    resolver: SourceResolver
    fetcher: FeedFetcher

    def dispatcher(self) -> NotificationDispatcher:
        """Build the Notebrook dispatcher; raises ConfigError if unconfigured."""
        return NotebrookDispatcher.from_config(self.config)

    def orchestrator(
        self, dispatcher: Optional[NotificationDispatcher] = None
    ) -> Orchestrator:
        return Orchestrator(
            feeds=self.feeds,
            cache=self.cache,
            resolver=self.resolver,
            fetcher=self.fetcher,
            dispatcher=dispatcher,
            max_workers=self.config.max_workers,
        )


@asynccontextmanager
async def open_context(
    config: FeederConfig, database: Optional[Database] = None
) -> AsyncIterator[AppContext]:
    """Connect storage and yield an AppContext, closing it on exit.

    Args:
        config: Loaded configuration
        database: Pre-built database (defaults to one at config.db_path)
    """
    if database is None:
        database = Database(config.db_path)
    await database.connect()

    try:
        yield AppContext(
            config=config,
            database=database,
            feeds=FeedRepository(database),
            cache=NotificationCache(database),
            resolver=SourceResolver(timeout=config.http_timeout),
            fetcher=FeedFetcher(timeout=config.http_timeout),
        )
    finally:
        await database.close()

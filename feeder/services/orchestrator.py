"""Run orchestration.

Drives each feed through resolve -> fetch -> diff -> dispatch -> record and
collects a per-feed result. Failures of one feed never stop the others, with
one exception: if the notification cache cannot be read, dedup cannot be
trusted and the run is aborted.
"""

import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from feeder.errors import (
    CacheReadError,
    DetectionError,
    FetchError,
    NotifyError,
    ParseError,
    StorageError,
)
from feeder.models.schemas import (
    Article,
    CycleStatus,
    FeedCycleResult,
    FeedRecord,
    Notification,
    RunMode,
    RunReport,
)
from feeder.services.feed_parser import FeedFetcher
from feeder.services.notifier import NotificationDispatcher
from feeder.services.source_resolver import SourceResolver
from feeder.storage.cache import NotificationCache
from feeder.storage.feeds import FeedRepository


logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs the notification cycle for a set of feeds."""

    def __init__(
        self,
        feeds: FeedRepository,
        cache: NotificationCache,
        resolver: SourceResolver,
        fetcher: FeedFetcher,
        dispatcher: Optional[NotificationDispatcher] = None,
        max_workers: int = 1,
    ):
        self.feeds = feeds
        self.cache = cache
        self.resolver = resolver
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.max_workers = max(1, max_workers)

    async def run(
        self,
        feeds: Optional[List[FeedRecord]] = None,
        mode: RunMode = RunMode.NORMAL,
    ) -> RunReport:
        """Process every feed once.

        Args:
            feeds: Feeds to process (defaults to all configured feeds)
            mode: normal, dry-run or skip-notify

        Returns:
            RunReport with one FeedCycleResult per feed, in input order

        Raises:
            StorageError: If the notification cache cannot be read
        """
        if mode == RunMode.NORMAL and self.dispatcher is None:
            raise ValueError("A dispatcher is required in normal mode")

        if feeds is None:
            feeds = await self.feeds.list_feeds()

        logger.info(f"Running {len(feeds)} feeds in {mode.value} mode")

        semaphore = asyncio.Semaphore(self.max_workers)

        async def bounded(feed: FeedRecord) -> FeedCycleResult:
            async with semaphore:
                return await self.run_cycle(feed, mode)

        outcomes = await asyncio.gather(
            *(bounded(feed) for feed in feeds), return_exceptions=True
        )

        report = RunReport(mode=mode)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
            report.results.append(outcome)

        logger.info(
            f"Run complete: {report.total_new} new, {report.total_notified} notified, "
            f"{report.total_failed_notifications} failed, "
            f"{len(report.failed_feeds)} feeds failed"
        )
        return report

    async def run_cycle(self, feed: FeedRecord, mode: RunMode) -> FeedCycleResult:
        """Run one feed's cycle and return its terminal state."""
        try:
            feed = await self._resolve(feed)
            fetched = await self.fetcher.fetch(feed.resolved_feed_url)
        except (DetectionError, FetchError, ParseError, StorageError) as e:
            logger.error(f"Feed {feed.display_name} failed: {e}")
            return FeedCycleResult(feed=feed, status=CycleStatus.FAILED, error=str(e))

        if feed.title is None:
            try:
                feed = await self._record_title(feed, fetched.title)
            except StorageError as e:
                logger.error(f"Feed {feed.display_name} failed to save title: {e}")
                return FeedCycleResult(feed=feed, status=CycleStatus.FAILED, error=str(e))

        feed_title = feed.title or fetched.title
        result = FeedCycleResult(
            feed=feed,
            status=CycleStatus.SKIPPED,
            feed_title=feed_title,
            total_articles=len(fetched.articles),
        )

        try:
            result.new_articles = await self.cache.filter_new(feed_title, fetched.articles)
        except StorageError as e:
            raise CacheReadError(str(e)) from e

        if not result.new_articles:
            logger.info(f"{feed_title}: no new articles")
            return result

        result.status = CycleStatus.NOTIFIED
        logger.info(f"{feed_title}: {result.new_count} new articles")

        if mode == RunMode.DRY_RUN:
            return result

        if mode == RunMode.SKIP_NOTIFY:
            to_record = result.new_articles
        else:
            to_record = await self._dispatch(feed_title, result)

        try:
            result.recorded = await self.cache.mark_seen(feed_title, to_record)
        except StorageError as e:
            logger.error(f"{feed_title}: failed to record notified articles: {e}")
            result.status = CycleStatus.FAILED
            result.error = str(e)

        return result

    async def _resolve(self, feed: FeedRecord) -> FeedRecord:
        if feed.is_resolved:
            return feed

        resolution = await self.resolver.detect_and_resolve(feed.original_url)
        updated = await self.feeds.update_resolution(
            feed.id,
            resolution.resolved_feed_url,
            None,
            resolution.source_type,
        )
        return updated or replace(
            feed,
            resolved_feed_url=resolution.resolved_feed_url,
            source_type=resolution.source_type,
        )

    async def _record_title(self, feed: FeedRecord, title: str) -> FeedRecord:
        updated = await self.feeds.update_resolution(feed.id, None, title, None)
        return updated or replace(feed, title=title)

    async def _dispatch(self, feed_title: str, result: FeedCycleResult) -> List[Article]:
        """Send each new article; return those whose send succeeded."""
        sent = []
        for article in result.new_articles:
            message = Notification.from_article(feed_title, article).format()
            try:
                await self.dispatcher.send(message)
            except NotifyError as e:
                logger.warning(f"{feed_title}: failed to notify '{article.title}': {e}")
                result.failed += 1
                continue
            result.notified += 1
            sent.append(article)
        return sent


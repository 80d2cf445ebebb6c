"""Feed management commands.

This module provides the operations behind each CLI command. Every handler
takes the AppContext and returns a result dictionary with a ``success`` flag,
its payload, and an ``error`` string when ``success`` is False.
"""

import logging
from typing import Any, Dict, List, Optional

from feeder.context import AppContext
from feeder.errors import (
    ConfigError,
    DetectionError,
    FeedAlreadyExists,
    FeedNotFound,
    FetchError,
    OpmlError,
    ParseError,
    StorageError,
)
from feeder.models.schemas import (
    FeedCycleResult,
    FeedRecord,
    Notification,
    RunMode,
)
from feeder.services.notifier import NotificationDispatcher
from feeder.services.opml import build_opml, parse_opml
from feeder.services.source_resolver import normalize_raw_url


logger = logging.getLogger(__name__)


def _feed_dict(feed: FeedRecord) -> Dict[str, Any]:
    return {
        "id": feed.id,
        "title": feed.title,
        "original_url": feed.original_url,
        "resolved_feed_url": feed.resolved_feed_url,
        "source_type": feed.source_type.value if feed.source_type else None,
        "created_at": feed.created_at.isoformat() if feed.created_at else None,
    }


async def _add(ctx: AppContext, url: str) -> FeedRecord:
    """Detect, validate and store a feed. Raises on any failure."""
    if await ctx.feeds.exists(url):
        raise FeedAlreadyExists(f"Feed already exists: {url}")

    resolution = await ctx.resolver.detect_and_resolve(url)
    fetched = await ctx.fetcher.fetch(resolution.resolved_feed_url)

    feed = await ctx.feeds.add(url)
    updated = await ctx.feeds.update_resolution(
        feed.id,
        resolution.resolved_feed_url,
        fetched.title,
        resolution.source_type,
    )
    return updated or feed


async def add_feed(ctx: AppContext, url: str) -> Dict[str, Any]:
    """Add a new feed to track.

    The URL's source type is detected and its feed endpoint resolved before
    anything is stored, so an unsupported URL never creates a dead feed.

    Args:
        ctx: Application context
        url: Feed, channel, profile or blog URL (https:// added if missing)

    Returns:
        Dictionary with:
        - success: bool
        - feed: object with id, title, original_url, resolved_feed_url, source_type
        - duplicate: True if the feed was already configured
        - error: string if success is False
    """
    url = normalize_raw_url(url)
    logger.info(f"add_feed called: url={url}")

    try:
        feed = await _add(ctx, url)
    except FeedAlreadyExists as e:
        return {"success": False, "duplicate": True, "error": str(e)}
    except (DetectionError, FetchError, ParseError, StorageError) as e:
        logger.warning(f"Could not add {url}: {e}")
        return {"success": False, "duplicate": False, "error": str(e)}

    return {"success": True, "duplicate": False, "feed": _feed_dict(feed)}


async def remove_feed(ctx: AppContext, feed_id: int) -> Dict[str, Any]:
    """Remove a feed.

    Notification history is kept, so re-adding the feed later does not
    re-notify articles that were already sent.

    Returns:
        Dictionary with:
        - success: bool
        - message: confirmation string if successful
        - error: string if the feed was not found
    """
    logger.info(f"remove_feed called: feed_id={feed_id}")

    try:
        feed = await ctx.feeds.require(feed_id)
    except FeedNotFound as e:
        return {"success": False, "error": str(e)}

    await ctx.feeds.remove(feed_id)

    return {
        "success": True,
        "message": f"Removed: {feed.display_name}",
        "feed": _feed_dict(feed),
    }


async def list_feeds(ctx: AppContext) -> Dict[str, Any]:
    """List all configured feeds.

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds
        - feeds: list of feed objects
    """
    logger.info("list_feeds called")

    feeds = await ctx.feeds.list_feeds()
    return {
        "success": True,
        "count": len(feeds),
        "feeds": [_feed_dict(feed) for feed in feeds],
    }


def _cycle_dict(result: FeedCycleResult, mode: RunMode) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "feed_id": result.feed.id,
        "feed": result.feed_title or result.feed.display_name,
        "status": result.status.value,
        "total_articles": result.total_articles,
        "new_articles": result.new_count,
        "notified": result.notified,
        "failed": result.failed,
        "recorded": result.recorded,
        "error": result.error,
    }
    if mode == RunMode.DRY_RUN:
        entry["would_notify"] = [
            Notification.from_article(result.feed_title, article).format()
            for article in result.new_articles
        ]
    return entry


async def run_feeds(
    ctx: AppContext,
    dry_run: bool = False,
    skip_notify: bool = False,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Dict[str, Any]:
    """Fetch all feeds and notify new articles.

    Args:
        ctx: Application context
        dry_run: Report what would be notified without sending or recording
        skip_notify: Record new articles as seen without sending (takes
            precedence over dry_run)
        dispatcher: Dispatcher to use in normal mode (defaults to Notebrook)

    Returns:
        Dictionary with:
        - success: False if any feed failed or the run could not start
        - mode: normal, dry-run or skip-notify
        - results: per-feed counts and status
        - summary: totals over all feeds
        - error: string if the run could not complete
    """
    if skip_notify:
        mode = RunMode.SKIP_NOTIFY
    elif dry_run:
        mode = RunMode.DRY_RUN
    else:
        mode = RunMode.NORMAL
    logger.info(f"run_feeds called: mode={mode.value}")

    if mode == RunMode.NORMAL and dispatcher is None:
        try:
            dispatcher = ctx.dispatcher()
        except ConfigError as e:
            return {"success": False, "mode": mode.value, "error": str(e)}

    try:
        report = await ctx.orchestrator(dispatcher).run(mode=mode)
    except StorageError as e:
        logger.error(f"Run aborted: {e}")
        return {"success": False, "mode": mode.value, "error": f"Run aborted: {e}"}

    return {
        "success": not report.has_failures,
        "mode": mode.value,
        "results": [_cycle_dict(result, mode) for result in report.results],
        "summary": {
            "feeds": len(report.results),
            "failed_feeds": len(report.failed_feeds),
            "new_articles": report.total_new,
            "notified": report.total_notified,
            "failed_notifications": report.total_failed_notifications,
        },
    }


async def import_feeds(ctx: AppContext, content: str) -> Dict[str, Any]:
    """Import feeds from an OPML document.

    Each URL goes through the same detection and validation as add_feed.

    Returns:
        Dictionary with:
        - success: bool (False only if the OPML itself is unreadable)
        - added: list of feed objects
        - duplicates: list of URLs already configured
        - invalid: list of {url, error}
    """
    logger.info("import_feeds called")

    try:
        urls = parse_opml(content)
    except OpmlError as e:
        return {"success": False, "error": str(e)}

    added: List[Dict[str, Any]] = []
    duplicates: List[str] = []
    invalid: List[Dict[str, str]] = []

    for url in urls:
        try:
            feed = await _add(ctx, url)
        except FeedAlreadyExists:
            duplicates.append(url)
            continue
        except (DetectionError, FetchError, ParseError, StorageError) as e:
            logger.warning(f"Could not import {url}: {e}")
            invalid.append({"url": url, "error": str(e)})
            continue
        added.append(_feed_dict(feed))

    return {
        "success": True,
        "added": added,
        "duplicates": duplicates,
        "invalid": invalid,
    }


async def export_feeds(ctx: AppContext) -> Dict[str, Any]:
    """Export all feeds as OPML.

    Returns:
        Dictionary with:
        - success: bool
        - count: number of feeds exported
        - opml: the OPML document
    """
    logger.info("export_feeds called")

    feeds = await ctx.feeds.list_feeds()
    return {"success": True, "count": len(feeds), "opml": build_opml(feeds)}

"""Unit tests for run orchestration.

Uses a real in-memory database with fake resolver, fetcher and dispatcher.
"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from feeder.errors import (
    CacheReadError,
    FetchError,
    NotifyError,
    StorageError,
    UnsupportedSource,
)
from feeder.models.schemas import (
    Article,
    CycleStatus,
    FetchedFeed,
    Resolution,
    RunMode,
    SourceType,
)
from feeder.services.notifier import NotebrookDispatcher
from feeder.services.orchestrator import Orchestrator
from feeder.storage.cache import NotificationCache
from feeder.storage.database import Database
from feeder.storage.feeds import FeedRepository


# Mark all tests as async
pytestmark = pytest.mark.anyio


class FakeResolver:
    """Resolves every URL to itself as RSS unless told otherwise."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    async def detect_and_resolve(self, raw_url):
        self.calls.append(raw_url)
        if raw_url in self.failures:
            raise self.failures[raw_url]
        return Resolution(source_type=SourceType.RSS_ATOM, resolved_feed_url=raw_url)


class FakeFetcher:
    """Serves FetchedFeed objects (or raises) per URL."""

    def __init__(self, responses):
        self.responses = responses

    async def fetch(self, feed_url):
        response = self.responses[feed_url]
        if isinstance(response, Exception):
            raise response
        return response


class FakeDispatcher:
    """Records sent messages; fails for messages containing a marker."""

    def __init__(self, fail_on=()):
        self.fail_on = list(fail_on)
        self.sent = []

    async def send(self, message):
        if any(marker in message for marker in self.fail_on):
            raise NotifyError("dispatcher unavailable")
        self.sent.append(message)


def article(article_id, title=None, summary=None):
    return Article(
        article_id=article_id,
        title=title or f"Post {article_id}",
        link=f"https://example.com/{article_id}",
        summary=summary,
        raw_links=[f"https://example.com/{article_id}"],
    )


@pytest.fixture
async def database():
    db = await Database().connect()
    yield db
    await db.close()


@pytest.fixture
def feeds(database):
    return FeedRepository(database)


@pytest.fixture
def cache(database):
    return NotificationCache(database)


def make_orchestrator(feeds, cache, fetcher, dispatcher=None, resolver=None, max_workers=1):
    return Orchestrator(
        feeds=feeds,
        cache=cache,
        resolver=resolver or FakeResolver(),
        fetcher=fetcher,
        dispatcher=dispatcher,
        max_workers=max_workers,
    )


URL = "https://example.com/feed.xml"


class TestNormalRun:
    """Tests for the normal notify-and-record cycle."""

    async def test_first_run_notifies_everything(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("2")])})
        dispatcher = FakeDispatcher()

        report = await make_orchestrator(feeds, cache, fetcher, dispatcher).run()

        result = report.results[0]
        assert result.status == CycleStatus.NOTIFIED
        assert result.new_count == 2
        assert result.notified == 2
        assert result.recorded == 2
        assert len(dispatcher.sent) == 2
        assert report.exit_code == 0

    async def test_message_format(self, feeds, cache):
        """Test the rendered notification text."""
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1", summary="Some text")])})
        dispatcher = FakeDispatcher()

        await make_orchestrator(feeds, cache, fetcher, dispatcher).run()

        assert dispatcher.sent == ["Blog Post 1: Some text https://example.com/1"]

    async def test_rerun_is_idempotent(self, feeds, cache):
        """Test that a second run over unchanged content sends nothing."""
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("2")])})
        dispatcher = FakeDispatcher()
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        await orchestrator.run()
        report = await orchestrator.run()

        assert report.results[0].status == CycleStatus.SKIPPED
        assert report.total_new == 0
        assert len(dispatcher.sent) == 2

    async def test_only_new_articles_are_sent(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1")])})
        dispatcher = FakeDispatcher()
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        await orchestrator.run()
        fetcher.responses[URL] = FetchedFeed("Blog", [article("2"), article("1")])
        report = await orchestrator.run()

        assert report.results[0].new_count == 1
        assert dispatcher.sent[-1].startswith("Blog Post 2")

    async def test_duplicate_ids_in_one_fetch_sent_once(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("1")])})
        dispatcher = FakeDispatcher()

        await make_orchestrator(feeds, cache, fetcher, dispatcher).run()

        assert len(dispatcher.sent) == 1

    async def test_resolution_and_title_are_persisted(self, feeds, cache):
        """Test that the first run resolves once and fixes the title."""
        feed = await feeds.add(URL)
        resolver = FakeResolver()
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [])})
        orchestrator = make_orchestrator(
            feeds, cache, fetcher, FakeDispatcher(), resolver=resolver
        )

        await orchestrator.run()
        await orchestrator.run()

        stored = await feeds.get(feed.id)
        assert stored.resolved_feed_url == URL
        assert stored.source_type == SourceType.RSS_ATOM
        assert stored.title == "Blog"
        assert resolver.calls == [URL]

    async def test_upstream_title_change_does_not_renotify(self, feeds, cache):
        """Test that dedup keys use the stored title, not the fetched one."""
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1")])})
        dispatcher = FakeDispatcher()
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        await orchestrator.run()
        fetcher.responses[URL] = FetchedFeed("Renamed Blog", [article("1")])
        report = await orchestrator.run()

        assert report.results[0].status == CycleStatus.SKIPPED
        assert len(dispatcher.sent) == 1

    async def test_normal_mode_requires_dispatcher(self, feeds, cache):
        with pytest.raises(ValueError):
            await make_orchestrator(feeds, cache, FakeFetcher({})).run()


class TestPartialFailure:
    """Tests for dispatcher failures inside one feed."""

    async def test_failed_send_is_retried_next_run(self, feeds, cache):
        """Test that only successfully sent articles are recorded."""
        await feeds.add(URL)
        fetcher = FakeFetcher({
            URL: FetchedFeed("Blog", [article("1"), article("2"), article("3")])
        })
        dispatcher = FakeDispatcher(fail_on=["Post 2"])
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        report = await orchestrator.run()

        result = report.results[0]
        assert result.notified == 2
        assert result.failed == 1
        assert result.recorded == 2
        assert await cache.contains("Blog", "1")
        assert not await cache.contains("Blog", "2")

        dispatcher.fail_on = []
        report = await orchestrator.run()

        assert report.results[0].new_count == 1
        assert dispatcher.sent[-1].startswith("Blog Post 2")

    async def test_cache_write_failure_fails_only_that_feed(self, feeds, cache):
        other = "https://other.example.com/feed.xml"
        await feeds.add(URL)
        await feeds.add(other)
        fetcher = FakeFetcher({
            URL: FetchedFeed("Blog", [article("1")]),
            other: FetchedFeed("Other", []),
        })
        orchestrator = make_orchestrator(feeds, cache, fetcher, FakeDispatcher())

        with patch.object(cache, "mark_seen", AsyncMock(side_effect=StorageError("disk full"))):
            report = await orchestrator.run()

        statuses = [r.status for r in report.results]
        assert statuses == [CycleStatus.FAILED, CycleStatus.SKIPPED]
        assert "disk full" in report.results[0].error

    async def test_malformed_notifier_url_does_not_abort_run(self, feeds, cache):
        """Test that a bad Notebrook URL fails each send but completes the run."""
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("2")])})
        dispatcher = NotebrookDispatcher(
            url="https://notebrook.example:abc", token="secret", channel="feeds"
        )
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        with patch("feeder.services.notifier.httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.get = AsyncMock(side_effect=httpx.InvalidURL("Invalid port: 'abc'"))
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=None)
            mock_client.return_value = mock_instance

            report = await orchestrator.run()

        result = report.results[0]
        assert result.status == CycleStatus.NOTIFIED
        assert result.notified == 0
        assert result.failed == 2
        assert result.recorded == 0
        assert await cache.count() == 0


class TestFailureIsolation:
    """Tests that one feed's failure does not affect others."""

    async def test_fetch_failure_is_isolated(self, feeds, cache):
        bad = "https://broken.example.com/feed.xml"
        await feeds.add(bad)
        await feeds.add(URL)
        fetcher = FakeFetcher({
            bad: FetchError("HTTP 500"),
            URL: FetchedFeed("Blog", [article("1")]),
        })
        dispatcher = FakeDispatcher()

        report = await make_orchestrator(feeds, cache, fetcher, dispatcher).run()

        assert report.results[0].status == CycleStatus.FAILED
        assert report.results[0].error == "HTTP 500"
        assert report.results[1].status == CycleStatus.NOTIFIED
        assert report.has_failures
        assert report.exit_code == 1
        assert len(dispatcher.sent) == 1

    async def test_detection_failure_leaves_feed_unresolved(self, feeds, cache):
        feed = await feeds.add(URL)
        resolver = FakeResolver(failures={URL: UnsupportedSource("nope")})

        report = await make_orchestrator(
            feeds, cache, FakeFetcher({}), FakeDispatcher(), resolver=resolver
        ).run()

        assert report.results[0].status == CycleStatus.FAILED
        assert not (await feeds.get(feed.id)).is_resolved

    async def test_cache_read_failure_aborts_run(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1")])})
        dispatcher = FakeDispatcher()

        with patch.object(cache, "filter_new", AsyncMock(side_effect=StorageError("corrupt"))):
            with pytest.raises(CacheReadError):
                await make_orchestrator(feeds, cache, fetcher, dispatcher).run()

        assert dispatcher.sent == []

    async def test_concurrent_feeds_keep_input_order(self, feeds, cache):
        urls = [f"https://site{i}.example.com/feed.xml" for i in range(6)]
        for url in urls:
            await feeds.add(url)
        fetcher = FakeFetcher({
            url: FetchedFeed(f"Site {i}", [article(f"{i}-a"), article(f"{i}-b")])
            for i, url in enumerate(urls)
        })
        dispatcher = FakeDispatcher()

        report = await make_orchestrator(
            feeds, cache, fetcher, dispatcher, max_workers=3
        ).run()

        assert [r.feed_title for r in report.results] == [f"Site {i}" for i in range(6)]
        assert report.total_notified == 12
        assert await cache.count() == 12


class TestRunModes:
    """Tests for dry-run and skip-notify."""

    async def test_dry_run_changes_nothing(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("2")])})
        orchestrator = make_orchestrator(feeds, cache, fetcher)

        report = await orchestrator.run(mode=RunMode.DRY_RUN)

        assert report.results[0].new_count == 2
        assert report.results[0].notified == 0
        assert await cache.count() == 0

        # A later normal run still sees everything as new
        dispatcher = FakeDispatcher()
        orchestrator.dispatcher = dispatcher
        report = await orchestrator.run()
        assert len(dispatcher.sent) == 2

    async def test_skip_notify_seeds_cache(self, feeds, cache):
        await feeds.add(URL)
        fetcher = FakeFetcher({URL: FetchedFeed("Blog", [article("1"), article("2")])})
        dispatcher = FakeDispatcher()
        orchestrator = make_orchestrator(feeds, cache, fetcher, dispatcher)

        report = await orchestrator.run(mode=RunMode.SKIP_NOTIFY)

        assert report.results[0].recorded == 2
        assert dispatcher.sent == []

        report = await orchestrator.run()
        assert report.total_new == 0
        assert dispatcher.sent == []

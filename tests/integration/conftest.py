"""Shared fixtures for feeder integration tests.

The AppContext runs against a real in-memory database; only the network
facing parts (resolver, fetcher, dispatcher) are replaced.
"""

import pytest

from feeder.config import FeederConfig
from feeder.context import open_context
from feeder.errors import NotifyError, UnsupportedSource
from feeder.models.schemas import Article, FetchedFeed, Resolution, SourceType
from feeder.storage.database import Database


class StubResolver:
    """Resolves URLs from a fixed table; anything else is unsupported."""

    def __init__(self, table):
        self.table = table

    async def detect_and_resolve(self, raw_url):
        if raw_url not in self.table:
            raise UnsupportedSource(f"Unsupported feed source: {raw_url}")
        return self.table[raw_url]


class StubFetcher:
    def __init__(self, feeds):
        self.feeds = feeds

    async def fetch(self, feed_url):
        return self.feeds[feed_url]


class RecordingDispatcher:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send(self, message):
        if self.fail:
            raise NotifyError("unavailable")
        self.sent.append(message)


BLOG_URL = "https://example.com/feed.xml"
CHANNEL_URL = "https://www.youtube.com/@someone"
CHANNEL_FEED = "https://www.youtube.com/feeds/videos.xml?channel_id=UCabcdefghijklmnopqrstuv"


def sample_article(article_id, title):
    return Article(
        article_id=article_id,
        title=title,
        link=f"https://example.com/{article_id}",
        summary=f"About {title}",
        raw_links=[f"https://example.com/{article_id}"],
    )


@pytest.fixture
def resolver():
    return StubResolver({
        BLOG_URL: Resolution(SourceType.RSS_ATOM, BLOG_URL),
        CHANNEL_URL: Resolution(SourceType.YOUTUBE, CHANNEL_FEED),
    })


@pytest.fixture
def fetcher():
    return StubFetcher({
        BLOG_URL: FetchedFeed("Example Blog", [
            sample_article("1", "First post"),
            sample_article("2", "Second post"),
        ]),
        CHANNEL_FEED: FetchedFeed("Someone", [sample_article("v1", "A video")]),
    })


@pytest.fixture
async def app_context(resolver, fetcher):
    """AppContext over an in-memory database with stubbed network components."""
    async with open_context(FeederConfig(), database=Database()) as ctx:
        ctx.resolver = resolver
        ctx.fetcher = fetcher
        yield ctx

"""Feed Tools Integration Tests.

This test suite validates the feed commands end to end: detection, storage,
the run cycle and OPML import/export against a real database.
"""

import pytest
from unittest.mock import patch

from feeder.services.source_resolver import SourceResolver
from feeder.tools import feed_tools

from .conftest import BLOG_URL, CHANNEL_FEED, CHANNEL_URL, RecordingDispatcher


pytestmark = pytest.mark.anyio


class TestAddFeed:
    """Test adding feeds."""

    async def test_add_feed(self, app_context):
        result = await feed_tools.add_feed(app_context, CHANNEL_URL)

        assert result["success"] is True
        feed = result["feed"]
        assert feed["original_url"] == CHANNEL_URL
        assert feed["resolved_feed_url"] == CHANNEL_FEED
        assert feed["source_type"] == "youtube"
        assert feed["title"] == "Someone"

    async def test_add_normalizes_scheme(self, app_context):
        result = await feed_tools.add_feed(app_context, "example.com/feed.xml")

        assert result["success"] is True
        assert result["feed"]["original_url"] == BLOG_URL

    async def test_add_duplicate(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.add_feed(app_context, BLOG_URL)

        assert result["success"] is False
        assert result["duplicate"] is True

    async def test_unsupported_url_creates_nothing(self, app_context):
        """Unsupported URLs are rejected before anything is stored."""
        result = await feed_tools.add_feed(app_context, "https://unknown.example.org")

        assert result["success"] is False
        assert "Unsupported" in result["error"]
        assert (await feed_tools.list_feeds(app_context))["count"] == 0

    async def test_malformed_url_is_rejected(self, app_context):
        """A URL with an invalid port is reported instead of crashing."""
        app_context.resolver = SourceResolver()

        with patch("feeder.services.source_resolver.httpx.AsyncClient") as mock_client:
            result = await feed_tools.add_feed(app_context, "example.com:abc/feed")

        mock_client.assert_not_called()
        assert result["success"] is False
        assert result["duplicate"] is False
        assert "Invalid URL" in result["error"]
        assert (await feed_tools.list_feeds(app_context))["count"] == 0


class TestListAndRemove:
    """Test listing and removing feeds."""

    async def test_list_feeds(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)
        await feed_tools.add_feed(app_context, CHANNEL_URL)

        result = await feed_tools.list_feeds(app_context)

        assert result["count"] == 2
        assert [f["title"] for f in result["feeds"]] == ["Example Blog", "Someone"]

    async def test_remove_feed(self, app_context):
        added = await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.remove_feed(app_context, added["feed"]["id"])

        assert result["success"] is True
        assert "Example Blog" in result["message"]
        assert (await feed_tools.list_feeds(app_context))["count"] == 0

    async def test_remove_missing_feed(self, app_context):
        result = await feed_tools.remove_feed(app_context, 42)

        assert result["success"] is False
        assert "not found" in result["error"]

    async def test_readding_does_not_renotify(self, app_context):
        """Notification history outlives the feed record."""
        added = await feed_tools.add_feed(app_context, BLOG_URL)
        dispatcher = RecordingDispatcher()
        await feed_tools.run_feeds(app_context, dispatcher=dispatcher)

        await feed_tools.remove_feed(app_context, added["feed"]["id"])
        await feed_tools.add_feed(app_context, BLOG_URL)
        result = await feed_tools.run_feeds(app_context, dispatcher=dispatcher)

        assert result["summary"]["new_articles"] == 0
        assert len(dispatcher.sent) == 2


class TestRunFeeds:
    """Test the run cycle through the command layer."""

    async def test_normal_run(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)
        dispatcher = RecordingDispatcher()

        result = await feed_tools.run_feeds(app_context, dispatcher=dispatcher)

        assert result["success"] is True
        assert result["mode"] == "normal"
        assert result["summary"]["notified"] == 2
        assert dispatcher.sent[0] == (
            "Example Blog First post: About First post https://example.com/1"
        )

    async def test_normal_run_without_notebrook_settings(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.run_feeds(app_context)

        assert result["success"] is False
        assert "NOTEBROOK_URL" in result["error"]

    async def test_dry_run_lists_messages(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.run_feeds(app_context, dry_run=True)

        assert result["mode"] == "dry-run"
        entry = result["results"][0]
        assert entry["new_articles"] == 2
        assert len(entry["would_notify"]) == 2
        assert await app_context.cache.count() == 0

    async def test_skip_notify_takes_precedence(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.run_feeds(app_context, dry_run=True, skip_notify=True)

        assert result["mode"] == "skip-notify"
        assert await app_context.cache.count() == 2

    async def test_failed_notifications_are_reported(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)

        result = await feed_tools.run_feeds(
            app_context, dispatcher=RecordingDispatcher(fail=True)
        )

        # Undelivered articles are not a feed failure; they retry next run
        assert result["success"] is True
        assert result["summary"]["failed_notifications"] == 2
        assert await app_context.cache.count() == 0


class TestOpml:
    """Test OPML import and export."""

    async def test_import(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)
        opml = f"""<?xml version="1.0" encoding="UTF-8"?>
<opml version="2.0">
  <head><title>Subscriptions</title></head>
  <body>
    <outline text="Blog" xmlUrl="{BLOG_URL}"/>
    <outline text="Channel" xmlUrl="{CHANNEL_URL}"/>
    <outline text="Unknown" xmlUrl="https://unknown.example.org/rss"/>
  </body>
</opml>
"""

        result = await feed_tools.import_feeds(app_context, opml)

        assert result["success"] is True
        assert [f["original_url"] for f in result["added"]] == [CHANNEL_URL]
        assert result["duplicates"] == [BLOG_URL]
        assert result["invalid"][0]["url"] == "https://unknown.example.org/rss"

    async def test_import_invalid_document(self, app_context):
        result = await feed_tools.import_feeds(app_context, "not opml")

        assert result["success"] is False

    async def test_import_continues_past_malformed_url(self, app_context):
        await feed_tools.add_feed(app_context, BLOG_URL)
        app_context.resolver = SourceResolver()
        opml = f"""<?xml version="1.0" encoding="UTF-8"?>
<opml version="2.0">
  <body>
    <outline text="Broken" xmlUrl="example.com:abc/feed"/>
    <outline text="Blog" xmlUrl="{BLOG_URL}"/>
  </body>
</opml>
"""

        with patch("feeder.services.source_resolver.httpx.AsyncClient") as mock_client:
            result = await feed_tools.import_feeds(app_context, opml)

        mock_client.assert_not_called()
        assert result["success"] is True
        assert result["added"] == []
        assert result["duplicates"] == [BLOG_URL]
        assert result["invalid"][0]["url"] == "https://example.com:abc/feed"
        assert "Invalid URL" in result["invalid"][0]["error"]

    async def test_export(self, app_context):
        await feed_tools.add_feed(app_context, CHANNEL_URL)

        result = await feed_tools.export_feeds(app_context)

        assert result["count"] == 1
        assert CHANNEL_FEED in result["opml"]

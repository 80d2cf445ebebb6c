"""Feed parser service.

This module fetches RSS/Atom feeds and maps their items to Article objects.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Union

import feedparser
import httpx
from bs4 import BeautifulSoup

from feeder.config import DEFAULT_TIMEOUT, USER_AGENT
from feeder.errors import FetchError, ParseError
from feeder.models.schemas import Article, FetchedFeed, stable_article_id


logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
UNTITLED_ARTICLE = "Untitled"
UNTITLED_FEED = "Untitled Feed"

# bozo conditions that still leave a fully parsed document
_TOLERATED_BOZO = (feedparser.CharacterEncodingOverride,)


class FeedFetcher:
    """Retrieves a resolved feed endpoint and parses it."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, user_agent: str = USER_AGENT):
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(self, feed_url: str) -> FetchedFeed:
        """Fetch and parse a feed.

        Args:
            feed_url: Canonical feed endpoint

        Returns:
            FetchedFeed with the feed title and every item

        Raises:
            FetchError: Network failure, timeout, non-success status or empty body
            ParseError: The body is not a well-formed syndication document
        """
        logger.info(f"Fetching feed: {feed_url}")

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
        ) as client:
            try:
                response = await client.get(feed_url)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise FetchError(f"Failed to fetch {feed_url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(f"Failed to fetch {feed_url}: HTTP {response.status_code}")

        if not response.content or not response.content.strip():
            raise FetchError(f"Empty response from {feed_url}")

        feed = parse_feed_document(response.content)
        logger.info(f"Parsed {len(feed.articles)} articles from {feed_url}")
        return feed


def parse_feed_document(content: Union[bytes, str]) -> FetchedFeed:
    """Parse syndication content into a FetchedFeed.

    Parsing is all-or-nothing: a malformed document raises instead of
    yielding whatever items were readable.

    Raises:
        ParseError: If the content is not a recognized, well-formed feed
    """
    parsed = feedparser.parse(content)

    if parsed.bozo and not isinstance(parsed.get("bozo_exception"), _TOLERATED_BOZO):
        raise ParseError(f"Malformed feed: {parsed.get('bozo_exception')}")

    if not parsed.get("version"):
        raise ParseError("Content is not a recognized RSS/Atom feed")

    title = (parsed.feed.get("title") or "").strip() or UNTITLED_FEED
    articles = [_entry_to_article(entry) for entry in parsed.entries]

    return FetchedFeed(title=title, articles=articles)


def is_feed_document(content: Union[bytes, str]) -> bool:
    """True if ``content`` parses as a feed."""
    try:
        parse_feed_document(content)
    except ParseError:
        return False
    return True


def _entry_to_article(entry: dict) -> Article:
    summary = html_to_text(_entry_html(entry)) or None

    # Mastodon posts and some microblogs have no title; the text becomes the
    # title and is not repeated as the summary
    title = (entry.get("title") or "").strip()
    if not title:
        title = truncate_for_title(summary, MAX_TITLE_LENGTH) if summary else UNTITLED_ARTICLE
        summary = None

    raw_links = _entry_links(entry)
    link = (entry.get("link") or "").strip() or (raw_links[0] if raw_links else "")

    article_id = (entry.get("id") or "").strip() or stable_article_id(link, title)

    return Article(
        article_id=article_id,
        title=title,
        link=link,
        published_at=_parse_date(entry),
        summary=summary,
        raw_links=raw_links,
    )


def _entry_html(entry: dict) -> str:
    for content in entry.get("content") or []:
        value = content.get("value")
        if value:
            return value
    return entry.get("summary") or ""


def _entry_links(entry: dict) -> List[str]:
    links = []
    candidates = [entry.get("link")] + [item.get("href") for item in entry.get("links") or []]
    for href in candidates:
        href = (href or "").strip()
        if href and href not in links:
            links.append(href)
    return links


def html_to_text(html: str) -> str:
    """Extract plain text from HTML, keeping word boundaries between blocks.

    Args:
        html: HTML fragment

    Returns:
        Text with whitespace collapsed
    """
    if not html or not html.strip():
        return ""

    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(["p", "br", "div"]):
        tag.insert_after(" ")

    return " ".join(soup.get_text().split())


def truncate_for_title(text: str, max_len: int) -> str:
    """Shorten text for use as a title, breaking at a word boundary."""
    if len(text) <= max_len:
        return text

    pos = text[:max_len].rfind(" ")
    if pos > 0:
        return f"{text[:pos]}..."
    return f"{text[:max_len]}..."


def _parse_date(entry: dict) -> Optional[datetime]:
    """Parse the publication date from a feed entry.

    Args:
        entry: Feed entry dict

    Returns:
        datetime if parsed successfully, None otherwise
    """
    for field in ["published", "updated", "created"]:
        # feedparser normalizes recognized dates to a UTC time struct
        parsed = entry.get(f"{field}_parsed")
        if parsed:
            try:
                return datetime(*parsed[:6], tzinfo=timezone.utc)
            except (ValueError, TypeError):
                pass

        date_str = entry.get(field)
        if not date_str:
            continue

        # Try RFC 2822 format (common in RSS)
        try:
            return parsedate_to_datetime(date_str)
        except (ValueError, TypeError):
            pass

        # Try ISO format
        try:
            return datetime.fromisoformat(date_str.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            pass

    return None

"""Data models for feeder.

This module defines the core data structures for feeds, fetched articles,
dedup keys and the results of a run.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class SourceType(str, Enum):
    """Supported source variants."""

    RSS_ATOM = "rss_atom"
    YOUTUBE = "youtube"
    MASTODON = "mastodon"
    WORDPRESS = "wordpress"
    BLOGGER = "blogger"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SourceType"]:
        if value is None:
            return None
        normalized = value.lower()
        if normalized in ("rss", "atom"):
            return cls.RSS_ATOM
        return cls(normalized)

    def __str__(self) -> str:
        return self.value


class RunMode(str, Enum):
    """How a run treats newly discovered articles."""

    NORMAL = "normal"
    DRY_RUN = "dry-run"
    SKIP_NOTIFY = "skip-notify"


class CycleStatus(str, Enum):
    """Terminal state of one feed's cycle."""

    SKIPPED = "skipped"
    NOTIFIED = "notified"
    FAILED = "failed"


@dataclass
class FeedRecord:
    """Represents a configured subscription."""

    id: int
    original_url: str
    resolved_feed_url: Optional[str]
    title: Optional[str]
    source_type: Optional[SourceType]
    created_at: Optional[datetime]

    @property
    def is_resolved(self) -> bool:
        return self.resolved_feed_url is not None

    @property
    def display_name(self) -> str:
        return self.title or self.original_url


def stable_article_id(link: str, title: str) -> str:
    """Deterministic identifier for items that carry no GUID."""
    digest = hashlib.sha256(f"{link}\n{title}".encode("utf-8"))
    return digest.hexdigest()


@dataclass
class Article:
    """Represents a single item from a fetched feed."""

    article_id: str
    title: str
    link: str
    published_at: Optional[datetime] = None
    summary: Optional[str] = None
    raw_links: List[str] = field(default_factory=list)


@dataclass
class FetchedFeed:
    """Feed-level title plus the items of one fetch."""

    title: str
    articles: List[Article]


@dataclass
class Resolution:
    """Outcome of source detection for a raw URL."""

    source_type: SourceType
    resolved_feed_url: str


@dataclass
class NotifiedArticleKey:
    """Persisted dedup marker."""

    feed_title: str
    article_id: str
    notified_at: Optional[datetime] = None


@dataclass
class Notification:
    """A message about one article, ready for the dispatcher."""

    feed_title: str
    article_title: str
    text: str
    links: List[str]

    @classmethod
    def from_article(cls, feed_title: str, article: Article) -> "Notification":
        return cls(
            feed_title=feed_title,
            article_title=article.title,
            text=article.summary or "",
            links=list(article.raw_links),
        )

    def format(self) -> str:
        """Render as ``{feed} {title}: {text} {links}``.

        The ``: {text}`` part is omitted when there is no text, and the links
        part is omitted when there are no links.
        """
        message = f"{self.feed_title} {self.article_title}"
        if self.text:
            message += f": {self.text}"
        if self.links:
            message += " " + " ".join(self.links)
        return message


@dataclass
class FeedCycleResult:
    """Per-feed outcome of a run."""

    feed: FeedRecord
    status: CycleStatus
    feed_title: Optional[str] = None
    total_articles: int = 0
    new_articles: List[Article] = field(default_factory=list)
    notified: int = 0
    failed: int = 0
    recorded: int = 0
    error: Optional[str] = None

    @property
    def new_count(self) -> int:
        return len(self.new_articles)


@dataclass
class RunReport:
    """Summary of one run over all feeds."""

    mode: RunMode
    results: List[FeedCycleResult] = field(default_factory=list)

    @property
    def failed_feeds(self) -> List[FeedCycleResult]:
        return [r for r in self.results if r.status == CycleStatus.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_feeds)

    @property
    def total_new(self) -> int:
        return sum(r.new_count for r in self.results)

    @property
    def total_notified(self) -> int:
        return sum(r.notified for r in self.results)

    @property
    def total_failed_notifications(self) -> int:
        return sum(r.failed for r in self.results)

    @property
    def exit_code(self) -> int:
        return 1 if self.has_failures else 0

"""Data models for feeder."""

from .schemas import (
    Article,
    CycleStatus,
    FeedCycleResult,
    FeedRecord,
    FetchedFeed,
    Notification,
    NotifiedArticleKey,
    Resolution,
    RunMode,
    RunReport,
    SourceType,
    stable_article_id,
)

__all__ = [
    "Article",
    "CycleStatus",
    "FeedCycleResult",
    "FeedRecord",
    "FetchedFeed",
    "Notification",
    "NotifiedArticleKey",
    "Resolution",
    "RunMode",
    "RunReport",
    "SourceType",
    "stable_article_id",
]

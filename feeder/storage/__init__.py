"""Storage layer for feeder."""

from .cache import NotificationCache
from .database import Database, init_database
from .feeds import FeedRepository

__all__ = [
    "Database",
    "init_database",
    "FeedRepository",
    "NotificationCache",
]

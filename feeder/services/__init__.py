"""Services for feeder."""

from .feed_parser import FeedFetcher, parse_feed_document
from .notifier import NotebrookDispatcher, NotificationDispatcher
from .opml import build_opml, parse_opml
from .orchestrator import Orchestrator
from .source_resolver import SOURCE_VARIANTS, SourceResolver, SourceVariant

__all__ = [
    "FeedFetcher",
    "parse_feed_document",
    "NotebrookDispatcher",
    "NotificationDispatcher",
    "build_opml",
    "parse_opml",
    "Orchestrator",
    "SOURCE_VARIANTS",
    "SourceResolver",
    "SourceVariant",
]

"""Exception hierarchy for feeder.

Every component raises a subclass of FeederError at its boundary, translating
library exceptions (httpx, aiosqlite, lxml) with ``raise ... from e``.
"""


class FeederError(Exception):
    """Base class for all feeder errors."""


class ConfigError(FeederError):
    """Configuration is missing or invalid."""


class DetectionError(FeederError):
    """A raw URL could not be mapped to a supported source."""


class UnsupportedSource(DetectionError):
    """No source variant matched, or the matched variant failed to resolve."""


class ChannelIdNotFound(UnsupportedSource):
    """The YouTube channel identifier could not be located."""


class FetchError(FeederError):
    """Network failure, timeout, non-success status or empty body."""


class ParseError(FeederError):
    """Content is not a recognized syndication document."""


class NotifyError(FeederError):
    """The notification dispatcher failed or timed out."""


class StorageError(FeederError):
    """Persistence read or write failure."""


class FeedAlreadyExists(FeederError):
    """A feed with the same original URL is already configured."""


class FeedNotFound(FeederError):
    """No feed with the given id exists."""


class OpmlError(FeederError):
    """OPML content could not be parsed."""


class CacheReadError(StorageError):
    """The notification cache could not be read; dedup cannot be trusted."""

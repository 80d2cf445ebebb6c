"""Source detection and resolution.

This module maps a raw user-supplied URL to a source variant and the canonical
feed endpoint for it. Variants are tried in a fixed priority order and the
first whose predicate matches wins; detection predicates are not mutually
exclusive, so the order is part of the contract.
"""

import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple
from urllib.parse import urlsplit

import httpx
from bs4 import BeautifulSoup

from feeder.config import DEFAULT_TIMEOUT, USER_AGENT
from feeder.errors import ChannelIdNotFound, DetectionError, UnsupportedSource
from feeder.models.schemas import Resolution, SourceType
from feeder.services.feed_parser import is_feed_document


logger = logging.getLogger(__name__)

YOUTUBE_FEED_URL = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"

# Channel tabs that do not change which channel a URL points at
YOUTUBE_TAB_PATHS = [
    "/videos",
    "/shorts",
    "/streams",
    "/playlists",
    "/community",
    "/channels",
    "/about",
    "/featured",
]

_YOUTUBE_URL_RE = re.compile(r"youtube\.com/(@|channel/|c/|user/)", re.IGNORECASE)
_CHANNEL_URL_RE = re.compile(r"youtube\.com/channel/(UC[\w-]{22})")
_CHANNEL_JSON_RE = re.compile(r'"channelId":"(UC[\w-]{22})"')
_CHANNEL_REF_RE = re.compile(r"channel/(UC[\w-]{22})")
_MASTODON_PATH_RE = re.compile(r"^/@([^/@]+)")
_MASTODON_HANDLE_RE = re.compile(r"^@([^@\s/]+)@([^@\s/]+)$")
_BLOGGER_HOST_RE = re.compile(r"(^|\.)blogspot\.[a-z]{2,}(\.[a-z]{2,})?$", re.IGNORECASE)

# httpx.InvalidURL is not an HTTPError
_REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL)

Predicate = Callable[[httpx.AsyncClient, str], Awaitable[bool]]
Resolver = Callable[[httpx.AsyncClient, str], Awaitable[str]]


@dataclass(frozen=True)
class SourceVariant:
    """Capability record: a detection predicate and its resolver."""

    source_type: SourceType
    can_handle: Predicate
    resolve: Resolver


def normalize_raw_url(raw_url: str) -> str:
    """Canonicalize user input before detection.

    ``@user@instance`` handles become ``https://instance/@user`` and a missing
    scheme defaults to https.
    """
    url = raw_url.strip()

    match = _MASTODON_HANDLE_RE.match(url)
    if match:
        user, instance = match.groups()
        return f"https://{instance}/@{user}"

    if not url.startswith(("http://", "https://")):
        url = "https://" + url

    return url


def _host(url: str) -> str:
    host = urlsplit(url).hostname
    if not host:
        raise UnsupportedSource(f"Missing host in URL: {url}")
    return host


def _site_root(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{_host(url)}"


# RSS/Atom

async def _is_feed(client: httpx.AsyncClient, url: str) -> bool:
    try:
        response = await client.get(url)
    except _REQUEST_ERRORS as e:
        logger.debug(f"Feed sniff failed for {url}: {e}")
        return False

    if response.status_code != 200 or not response.content:
        return False
    return is_feed_document(response.content)


async def _resolve_identity(client: httpx.AsyncClient, url: str) -> str:
    return url


# YouTube

def normalize_channel_url(url: str) -> str:
    """Strip a trailing channel tab, e.g. ``/@user/videos`` -> ``/@user``."""
    normalized = url.rstrip("/")
    for path in YOUTUBE_TAB_PATHS:
        if normalized.endswith(path):
            return normalized[: -len(path)]
    return normalized


def extract_channel_id_from_html(html: str) -> Optional[str]:
    """Locate the channel id in a YouTube channel page.

    Tries, in order: the channelId meta tag, the canonical link, the embedded
    ``"channelId"`` JSON field, and any ``channel/UC...`` reference.
    """
    soup = BeautifulSoup(html, "lxml")

    meta = soup.find("meta", attrs={"itemprop": "channelId"})
    if meta and meta.get("content"):
        return meta["content"]

    canonical = soup.find("link", rel="canonical")
    if canonical and canonical.get("href"):
        match = _CHANNEL_URL_RE.search(canonical["href"])
        if match:
            return match.group(1)

    for pattern in (_CHANNEL_JSON_RE, _CHANNEL_REF_RE):
        match = pattern.search(html)
        if match:
            return match.group(1)

    return None


async def _is_youtube(client: httpx.AsyncClient, url: str) -> bool:
    return bool(_YOUTUBE_URL_RE.search(url))


async def _resolve_youtube(client: httpx.AsyncClient, url: str) -> str:
    channel_url = normalize_channel_url(url)

    match = _CHANNEL_URL_RE.search(channel_url)
    if match:
        return YOUTUBE_FEED_URL.format(channel_id=match.group(1))

    try:
        response = await client.get(channel_url)
    except _REQUEST_ERRORS as e:
        raise ChannelIdNotFound(f"Could not fetch YouTube page {channel_url}: {e}") from e

    if response.status_code != 200:
        raise ChannelIdNotFound(
            f"Could not fetch YouTube page {channel_url}: HTTP {response.status_code}"
        )

    channel_id = extract_channel_id_from_html(response.text)
    if channel_id is None:
        raise ChannelIdNotFound(f"Could not find channel ID on YouTube page {channel_url}")

    return YOUTUBE_FEED_URL.format(channel_id=channel_id)


# Mastodon

async def _is_mastodon(client: httpx.AsyncClient, url: str) -> bool:
    parts = urlsplit(url)
    host = (parts.hostname or "").lower()
    if not host or host.endswith(("youtube.com", "youtu.be")):
        return False
    return bool(_MASTODON_PATH_RE.match(parts.path))


async def _resolve_mastodon(client: httpx.AsyncClient, url: str) -> str:
    match = _MASTODON_PATH_RE.match(urlsplit(url).path)
    if not match:
        raise UnsupportedSource(f"Could not extract Mastodon username from {url}")
    return f"https://{_host(url)}/@{match.group(1)}.rss"


# WordPress

async def _is_wordpress(client: httpx.AsyncClient, url: str) -> bool:
    try:
        host = _host(url)
    except DetectionError:
        return False

    if host.lower().endswith("wordpress.com"):
        return True

    wp_json_url = f"{_site_root(url)}/wp-json/"

    # HEAD first (cheaper), GET if the server refuses HEAD
    for method in (client.head, client.get):
        try:
            response = await method(wp_json_url)
        except _REQUEST_ERRORS as e:
            logger.debug(f"WordPress check failed for {wp_json_url}: {e}")
            continue
        if 200 <= response.status_code < 300:
            return True

    return False


async def _resolve_wordpress(client: httpx.AsyncClient, url: str) -> str:
    return f"{_site_root(url)}/feed/"


# Blogger

async def _is_blogger(client: httpx.AsyncClient, url: str) -> bool:
    host = urlsplit(url).hostname or ""
    return bool(_BLOGGER_HOST_RE.search(host))


async def _resolve_blogger(client: httpx.AsyncClient, url: str) -> str:
    return f"https://{_host(url)}/feeds/posts/default"


SOURCE_VARIANTS: Tuple[SourceVariant, ...] = (
    SourceVariant(SourceType.RSS_ATOM, _is_feed, _resolve_identity),
    SourceVariant(SourceType.YOUTUBE, _is_youtube, _resolve_youtube),
    SourceVariant(SourceType.MASTODON, _is_mastodon, _resolve_mastodon),
    SourceVariant(SourceType.WORDPRESS, _is_wordpress, _resolve_wordpress),
    SourceVariant(SourceType.BLOGGER, _is_blogger, _resolve_blogger),
)


class SourceResolver:
    """Detects the source variant of a raw URL and resolves its feed endpoint."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
        variants: Tuple[SourceVariant, ...] = SOURCE_VARIANTS,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.variants = variants

    async def detect_and_resolve(self, raw_url: str) -> Resolution:
        """Resolve a raw URL to (source_type, resolved_feed_url).

        Args:
            raw_url: URL as entered by the user

        Returns:
            Resolution for the first matching variant

        Raises:
            UnsupportedSource: No variant matches or its resolution fails
            ChannelIdNotFound: YouTube channel id could not be scraped
        """
        url = normalize_raw_url(raw_url)
        logger.info(f"Detecting source for: {url}")

        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, ValueError) as e:
            raise UnsupportedSource(f"Invalid URL {url}: {e}") from e
        if not parsed.host:
            raise UnsupportedSource(f"Missing host in URL: {url}")

        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
        ) as client:
            for variant in self.variants:
                if not await variant.can_handle(client, url):
                    continue

                logger.info(f"Detected {variant.source_type} source: {url}")
                try:
                    resolved = await variant.resolve(client, url)
                except DetectionError:
                    raise
                except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                    raise UnsupportedSource(
                        f"Could not resolve {variant.source_type} source {url}: {e}"
                    ) from e

                logger.info(f"Resolved {url} to {resolved}")
                return Resolution(source_type=variant.source_type, resolved_feed_url=resolved)

        raise UnsupportedSource(f"Unsupported feed source: {url}")

"""OPML import/export.

This module reads subscription lists from OPML and writes the configured
feeds back out as OPML 2.0.
"""

from typing import List

from bs4 import BeautifulSoup

from feeder.errors import OpmlError
from feeder.models.schemas import FeedRecord
from feeder.services.source_resolver import normalize_raw_url


OPML_TITLE = "Feeder Subscriptions"


def parse_opml(content: str) -> List[str]:
    """Collect feed URLs from every outline, including nested ones.

    Args:
        content: OPML document

    Returns:
        Unique feed URLs in document order

    Raises:
        OpmlError: If the document has no <opml>/<body> structure
    """
    soup = BeautifulSoup(content, "xml")

    opml = soup.find("opml")
    body = opml.find("body") if opml else None
    if body is None:
        raise OpmlError("Not an OPML document: missing <opml> or <body>")

    urls: List[str] = []
    for outline in body.find_all("outline"):
        xml_url = (outline.get("xmlUrl") or "").strip()
        if not xml_url:
            continue
        url = normalize_raw_url(xml_url)
        if url not in urls:
            urls.append(url)

    return urls


def build_opml(feeds: List[FeedRecord]) -> str:
    """Render feeds as an OPML 2.0 document."""
    soup = BeautifulSoup("", "xml")

    opml = soup.new_tag("opml", attrs={"version": "2.0"})
    soup.append(opml)

    head = soup.new_tag("head")
    title = soup.new_tag("title")
    title.string = OPML_TITLE
    head.append(title)
    opml.append(head)

    body = soup.new_tag("body")
    opml.append(body)

    for feed in feeds:
        attrs = {
            "text": feed.display_name,
            "title": feed.display_name,
            "type": "rss",
            "xmlUrl": feed.resolved_feed_url or feed.original_url,
            "htmlUrl": feed.original_url,
        }
        body.append(soup.new_tag("outline", attrs=attrs))

    return soup.prettify()

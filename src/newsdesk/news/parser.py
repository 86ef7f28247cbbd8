from __future__ import annotations

import logging
from typing import Any

import feedparser

from newsdesk.news.models import FeedKind, ParsedFeed

LOGGER = logging.getLogger(__name__)

DEFAULT_FEED_TITLE = "Source"


def detect_kind(parsed: Any) -> FeedKind:
    """Map feedparser's version string onto the schemas we know how to read."""
    version = str(parsed.get("version") or "").lower()
    if version.startswith("rss"):
        return "rss"
    if version.startswith("atom"):
        return "atom"
    return "empty"


def _feed_title(feed_meta: Any, fallback_title: str | None) -> str:
    title = feed_meta.get("title")
    if not title:
        detail = feed_meta.get("title_detail") or {}
        title = detail.get("value")
    return str(title or fallback_title or DEFAULT_FEED_TITLE)


def parse_feed(content: bytes, fallback_title: str | None = None) -> ParsedFeed:
    """Parse raw feed bytes and dispatch on the detected schema.

    RSS channels yield their ``item`` children and Atom feeds their ``entry``
    children. Anything else, including documents too broken for feedparser to
    recognise, yields an empty feed rather than an error.

    Only bytes are accepted: feedparser treats a string as a URL or file path.
    """
    if not isinstance(content, (bytes, bytearray)):
        raise TypeError(f"parse_feed expects bytes, got {type(content).__name__}")
    parsed = feedparser.parse(bytes(content))
    kind = detect_kind(parsed)
    feed_title = _feed_title(parsed.get("feed") or {}, fallback_title)

    if kind == "empty":
        if parsed.get("bozo"):
            LOGGER.debug("Unrecognised feed document: %s", parsed.get("bozo_exception"))
        return ParsedFeed(kind="empty", feed_title=feed_title)

    entries = [entry for entry in parsed.get("entries", []) if isinstance(entry, dict)]
    return ParsedFeed(kind=kind, feed_title=feed_title, entries=entries)

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from newsdesk.news.models import Item, Source

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_HREF_RE = re.compile(r'href="([^"]+)"', re.IGNORECASE)

# &amp; first: "&amp;lt;" decodes all the way to "<".
_ENTITIES = (
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

_PUBLISHED_KEYS = ("pubDate", "pubdate", "published", "updated", "dc_date", "date")


def decode_entities(value: str) -> str:
    for entity, char in _ENTITIES:
        value = value.replace(entity, char)
    return value


def strip_html(value: str | None) -> str:
    if not value:
        return ""
    text = _TAG_RE.sub(" ", value)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return decode_entities(text)


def extract_href(value: str | None) -> str:
    """First ``href="..."`` in an HTML fragment, entity-decoded, or ``""``."""
    if not value:
        return ""
    match = _HREF_RE.search(value)
    return decode_entities(match.group(1)) if match else ""


def _text(value: Any) -> str:
    """Unwrap the shapes a feed field can take: plain string, text wrapper, or list of either."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        for key in ("value", "text"):
            inner = value.get(key)
            if inner:
                return str(inner)
        return ""
    if isinstance(value, (list, tuple)):
        return _text(value[0]) if value else ""
    return str(value)


def pick_link(entry: Mapping[str, Any]) -> str:
    link = entry.get("link")
    if isinstance(link, Mapping) and link.get("href"):
        return str(link["href"]).strip()

    links = entry.get("links") or []
    if isinstance(links, Mapping):
        links = [links]
    candidates = [ln for ln in links if isinstance(ln, Mapping) and ln.get("href")]
    alternates = [ln for ln in candidates if ln.get("rel", "alternate") == "alternate"]
    if alternates:
        return str(alternates[0]["href"]).strip()
    if candidates:
        return str(candidates[0]["href"]).strip()

    return _text(link).strip()


def pick_title(entry: Mapping[str, Any]) -> str:
    return _text(entry.get("title")) or _text(entry.get("title_detail"))


def pick_summary(entry: Mapping[str, Any]) -> str:
    """Raw (still HTML) summary body."""
    for key in ("description", "summary", "summary_detail", "content"):
        value = _text(entry.get(key))
        if value:
            return value
    return ""


def pick_published(entry: Mapping[str, Any]) -> str:
    for key in _PUBLISHED_KEYS:
        value = _text(entry.get(key)).strip()
        if value:
            return value
    return ""


def pick_byline(entry: Mapping[str, Any], feed_title: str) -> str:
    source = entry.get("source")
    if isinstance(source, Mapping):
        byline = source.get("title") or _text(source)
    else:
        byline = _text(source)
    if byline:
        return str(byline)

    author_detail = entry.get("author_detail")
    if isinstance(author_detail, Mapping) and author_detail.get("name"):
        return str(author_detail["name"])
    return _text(entry.get("author")) or feed_title


def pick_id(entry: Mapping[str, Any], link: str, title: str) -> str:
    return _text(entry.get("id")) or _text(entry.get("guid")) or link or title


def normalize_entry(entry: Mapping[str, Any], feed_title: str, source: Source) -> Item:
    link = pick_link(entry)
    title = pick_title(entry)
    summary_raw = pick_summary(entry)

    return Item(
        id=pick_id(entry, link, title),
        title=strip_html(title),
        # some feeds only carry the real article URL inside the description
        link=extract_href(summary_raw) or link,
        summary=strip_html(summary_raw),
        published_at=pick_published(entry),
        source=pick_byline(entry, feed_title),
        feed_title=feed_title,
        country=source.country,
    )

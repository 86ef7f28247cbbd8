from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from dateutil import parser as dtparser

from newsdesk.news.models import Item

OLDEST = datetime.min.replace(tzinfo=UTC)

_HOUR = 3600
# RFC 822 zone names dateutil does not know on its own
RFC822_ZONES = {
    "UT": 0,
    "GMT": 0,
    "EST": -5 * _HOUR,
    "EDT": -4 * _HOUR,
    "CST": -6 * _HOUR,
    "CDT": -5 * _HOUR,
    "MST": -7 * _HOUR,
    "MDT": -6 * _HOUR,
    "PST": -8 * _HOUR,
    "PDT": -7 * _HOUR,
}

_DEFAULT_A = datetime(1900, 1, 1)
_DEFAULT_B = datetime(1901, 1, 1)


def dedupe_key(item: Item) -> str:
    return item.link or item.title


def dedupe(items: Iterable[Item]) -> list[Item]:
    """Keep the first item per link (or title when there is no link).

    Items with neither are dropped. Input order decides the winner, so
    callers flatten sources in registry order first.
    """
    seen: set[str] = set()
    out: list[Item] = []
    for item in items:
        key = dedupe_key(item)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def published_timestamp(value: str | None) -> datetime:
    """Interpret a feed date; values without a year or that fail to parse map to OLDEST."""
    if not value:
        return OLDEST
    try:
        parsed = dtparser.parse(value, default=_DEFAULT_A, tzinfos=RFC822_ZONES)
        # a field missing from the value takes it from the default, so a
        # year that changes with the default was never in the value
        if parsed.year != dtparser.parse(value, default=_DEFAULT_B, tzinfos=RFC822_ZONES).year:
            return OLDEST
    except (ValueError, OverflowError, TypeError):
        return OLDEST

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def sort_by_published(items: Iterable[Item]) -> list[Item]:
    """Newest first; missing or unparseable dates sink to the end in their original order."""
    return sorted(items, key=lambda item: published_timestamp(item.published_at), reverse=True)


def truncate(items: Sequence[Item], limit: int) -> list[Item]:
    return list(items[: max(limit, 0)])

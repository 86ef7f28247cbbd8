from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

import httpx

from newsdesk.core.config import Settings
from newsdesk.news.dedupe import dedupe, sort_by_published, truncate
from newsdesk.news.fetcher import CancellationToken, fetch
from newsdesk.news.models import ResponseEnvelope, Source, SourceRegistry, SourceResult
from newsdesk.news.normalize import normalize_entry
from newsdesk.news.parser import parse_feed
from newsdesk.news.resolver import LinkResolver, get_process_cache, resolve_links

LOGGER = logging.getLogger(__name__)


async def collect_source(
    source: Source,
    settings: Settings,
    client: httpx.AsyncClient,
    token: CancellationToken | None = None,
) -> SourceResult:
    """Fetch, parse and normalize one source. Failures come back as an empty result."""
    result = await fetch(
        source.url,
        timeout=settings.fetch_timeout_seconds,
        client=client,
        token=token,
        user_agent=settings.user_agent,
    )
    if not result.ok:
        return SourceResult(source=source, error=result.error)

    try:
        feed = parse_feed(result.content, fallback_title=source.name)
        items = [normalize_entry(entry, feed.feed_title, source) for entry in feed.entries]
    except Exception as exc:
        return SourceResult(source=source, error=f"parse failed: {exc}")

    return SourceResult(source=source, items=items)


async def collect_sources(
    registry: SourceRegistry,
    settings: Settings,
    client: httpx.AsyncClient,
    token: CancellationToken | None = None,
) -> list[SourceResult]:
    tasks = [collect_source(source, settings, client, token) for source in registry.sources]
    grouped = await asyncio.gather(*tasks, return_exceptions=True)

    results: list[SourceResult] = []
    for source, outcome in zip(registry.sources, grouped, strict=True):
        if isinstance(outcome, Exception):
            outcome = SourceResult(source=source, error=str(outcome) or type(outcome).__name__)
        if not outcome.ok:
            LOGGER.warning("Feed %s failed: %s", source.name, outcome.error)
        results.append(outcome)
    return results


async def build_digest(
    registry: SourceRegistry,
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
    resolver: LinkResolver | None = None,
    now: datetime | None = None,
    token: CancellationToken | None = None,
) -> ResponseEnvelope:
    """Run one full digest.

    ``token`` is handed to every outbound call; cancelling it turns the
    remaining fetches and resolves into isolated failures.
    """
    if client is None:
        async with httpx.AsyncClient(timeout=settings.fetch_timeout_seconds) as owned:
            return await build_digest(registry, settings, client=owned, resolver=resolver, now=now, token=token)

    if resolver is None:
        resolver = LinkResolver(
            get_process_cache(settings.redirect_cache_max_entries),
            client=client,
            timeout=settings.fetch_timeout_seconds,
            user_agent=settings.user_agent,
        )

    results = await collect_sources(registry, settings, client, token)
    merged = [item for result in results for item in result.items]
    deduped = dedupe(merged)

    outcomes = await resolve_links(deduped, resolver, limit=settings.max_resolve, token=token)
    resolved = sum(1 for outcome in outcomes if outcome.changed)

    items = truncate(sort_by_published(deduped), settings.max_items)
    LOGGER.info(
        "Digest built | sources_ok=%d/%d merged=%d deduped=%d resolved=%d emitted=%d",
        sum(1 for result in results if result.ok),
        len(results),
        len(merged),
        len(deduped),
        resolved,
        len(items),
    )

    updated_at = (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
    return ResponseEnvelope(updated_at=updated_at, items=items, sources=registry.names)

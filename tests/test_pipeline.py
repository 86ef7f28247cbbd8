from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime

import httpx
import pytest

from newsdesk.core.config import Settings
from newsdesk.news.fetcher import CancellationToken
from newsdesk.news.models import Source, SourceRegistry
from newsdesk.news.pipeline import build_digest, collect_sources
from newsdesk.news.resolver import InMemoryRedirectCache, LinkResolver, resolve_links

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

RSS_A = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed A</title>
<item><guid>g1</guid><title>T1</title><pubDate>2024-01-02</pubDate><link>http://a/1</link></item>
</channel></rss>
"""

ATOM_B = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom"><title>Feed B</title>
<entry><id>g2</id><title>T2</title><updated>2024-01-03</updated><link href="http://b/1"/></entry>
</feed>
"""

RSS_DUPLICATE = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Feed C</title>
<item><title>T1 copy</title><pubDate>2024-01-05</pubDate><link>http://a/1</link></item>
<item><title>C only</title><pubDate>2024-01-04</pubDate><link>http://c/1</link></item>
</channel></rss>
"""

RSS_GOOGLE = b"""<?xml version="1.0"?>
<rss version="2.0"><channel><title>Google News</title>
<item><title>Redirected</title><pubDate>2024-01-06</pubDate>
<link>https://news.google.com/rss/articles/abc</link></item>
</channel></rss>
"""


def _rss_with_items(count: int, prefix: str) -> bytes:
    items = "".join(
        f"<item><title>{prefix} {i}</title><link>https://news.google.com/rss/articles/{prefix}{i}</link>"
        f"<pubDate>2024-02-{(i % 28) + 1:02d}</pubDate></item>"
        for i in range(count)
    )
    return f'<?xml version="1.0"?><rss version="2.0"><channel><title>{prefix}</title>{items}</channel></rss>'.encode()


def _settings(**overrides) -> Settings:
    defaults = dict(fetch_timeout_seconds=0.2, max_items=60, max_resolve=20)
    defaults.update(overrides)
    return Settings(**defaults)


def _registry(*pairs: tuple[str, str]) -> SourceRegistry:
    return SourceRegistry(sources=tuple(Source(name=name, url=url) for name, url in pairs))


class _Router:
    """MockTransport handler that serves feeds by URL and records every request."""

    def __init__(self, routes: dict[str, object]) -> None:
        self.routes = routes
        self.requests: list[str] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        route = self.routes.get(url)
        if route is None:
            if "news.google.com/rss/articles/" in url:
                slug = url.rsplit("/", 1)[-1]
                return httpx.Response(302, headers={"Location": f"https://publisher.test/{slug}"})
            if url.startswith("https://publisher.test/"):
                return httpx.Response(200, content=b"<html></html>")
            return httpx.Response(404)
        if route == "timeout":
            await asyncio.sleep(5)
        if route == "boom":
            raise httpx.ConnectError("boom", request=request)
        return httpx.Response(200, content=route)

    def count(self, prefix: str) -> int:
        return sum(1 for url in self.requests if url.startswith(prefix))


async def _digest(router: _Router, registry: SourceRegistry, settings: Settings | None = None, cache=None):
    settings = settings or _settings()
    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        resolver = LinkResolver(cache if cache is not None else InMemoryRedirectCache(), client=client, timeout=0.2)
        return await build_digest(
            registry,
            settings,
            client=client,
            resolver=resolver,
            now=datetime(2024, 3, 1, tzinfo=UTC),
        )


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_rss_and_atom_merge_sorted_by_date() -> None:
    router = _Router({"http://feeds.test/a": RSS_A, "http://feeds.test/b": ATOM_B})
    registry = _registry(("A", "http://feeds.test/a"), ("B", "http://feeds.test/b"))

    envelope = await _digest(router, registry)

    assert [item.title for item in envelope.items] == ["T2", "T1"]
    assert [item.id for item in envelope.items] == ["g2", "g1"]
    assert envelope.sources == ["A", "B"]
    assert envelope.updated_at == "2024-03-01T00:00:00Z"


@pytest.mark.asyncio
async def test_duplicate_link_keeps_first_source() -> None:
    router = _Router({"http://feeds.test/a": RSS_A, "http://feeds.test/c": RSS_DUPLICATE})
    registry = _registry(("A", "http://feeds.test/a"), ("C", "http://feeds.test/c"))

    envelope = await _digest(router, registry)

    links = [item.link for item in envelope.items]
    assert sorted(links) == ["http://a/1", "http://c/1"]
    survivor = next(item for item in envelope.items if item.link == "http://a/1")
    assert survivor.title == "T1"
    assert survivor.feed_title == "Feed A"


@pytest.mark.asyncio
async def test_failing_sources_are_isolated() -> None:
    router = _Router(
        {
            "http://feeds.test/a": RSS_A,
            "http://feeds.test/slow": "timeout",
            "http://feeds.test/down": "boom",
            "http://feeds.test/b": ATOM_B,
        }
    )
    registry = _registry(
        ("Slow", "http://feeds.test/slow"),
        ("A", "http://feeds.test/a"),
        ("Down", "http://feeds.test/down"),
        ("Missing", "http://feeds.test/missing"),
        ("B", "http://feeds.test/b"),
    )

    envelope = await _digest(router, registry)

    assert len(envelope.items) == 2
    assert envelope.sources == ["Slow", "A", "Down", "Missing", "B"]


@pytest.mark.asyncio
async def test_collect_sources_reports_per_source_outcomes() -> None:
    router = _Router({"http://feeds.test/a": RSS_A, "http://feeds.test/down": "boom", "http://feeds.test/junk": b"nope"})
    registry = _registry(
        ("A", "http://feeds.test/a"),
        ("Down", "http://feeds.test/down"),
        ("Junk", "http://feeds.test/junk"),
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        results = await collect_sources(registry, _settings(), client)

    assert [result.ok for result in results] == [True, False, True]
    assert len(results[0].items) == 1
    assert results[1].items == []
    assert results[2].items == []


@pytest.mark.asyncio
async def test_redirect_links_are_resolved_and_cached() -> None:
    router = _Router({"http://feeds.test/g": RSS_GOOGLE})
    registry = _registry(("G", "http://feeds.test/g"))
    cache = InMemoryRedirectCache()

    first = await _digest(router, registry, cache=cache)
    second = await _digest(router, registry, cache=cache)

    assert first.items[0].link == "https://publisher.test/abc"
    assert second.items[0].link == "https://publisher.test/abc"
    assert router.count("https://news.google.com/") == 1


@pytest.mark.asyncio
async def test_redirect_failure_leaves_link_unchanged() -> None:
    router = _Router(
        {
            "http://feeds.test/g": RSS_GOOGLE,
            "https://news.google.com/rss/articles/abc": "boom",
        }
    )
    registry = _registry(("G", "http://feeds.test/g"))
    cache = InMemoryRedirectCache()

    envelope = await _digest(router, registry, cache=cache)

    assert envelope.items[0].link == "https://news.google.com/rss/articles/abc"
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_output_is_bounded_and_resolution_capped() -> None:
    router = _Router(
        {
            "http://feeds.test/x": _rss_with_items(40, "x"),
            "http://feeds.test/y": _rss_with_items(40, "y"),
        }
    )
    registry = _registry(("X", "http://feeds.test/x"), ("Y", "http://feeds.test/y"))

    envelope = await _digest(router, registry)

    assert len(envelope.items) == 60
    assert router.count("https://news.google.com/") == 20
    links = [item.link for item in envelope.items]
    assert len(set(links)) == len(links)


@pytest.mark.asyncio
async def test_no_sources_gives_empty_digest() -> None:
    envelope = await _digest(_Router({}), SourceRegistry())

    assert envelope.items == []
    assert envelope.sources == []
    assert envelope.to_dict()["items"] == []


class _SlowRouter:
    """Delays every response and tracks how many requests overlap."""

    def __init__(self, delay: float, feeds: dict[str, bytes]) -> None:
        self.delay = delay
        self.feeds = feeds
        self.in_flight = 0
        self.peak = 0
        self.redirect_in_flight = 0
        self.redirect_peak = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url.startswith("https://publisher.test/"):
            return httpx.Response(200, content=b"<html></html>")
        redirect = "news.google.com/rss/articles/" in url

        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        if redirect:
            self.redirect_in_flight += 1
            self.redirect_peak = max(self.redirect_peak, self.redirect_in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
            if redirect:
                self.redirect_in_flight -= 1

        if redirect:
            return httpx.Response(302, headers={"Location": f"https://publisher.test/{url.rsplit('/', 1)[-1]}"})
        return httpx.Response(200, content=self.feeds[url])


def _single_item_rss(name: str) -> bytes:
    return (
        f'<?xml version="1.0"?><rss version="2.0"><channel><title>{name}</title>'
        f"<item><title>{name} story</title><link>http://{name}.test/1</link>"
        f"<pubDate>2024-01-02</pubDate></item></channel></rss>"
    ).encode()


@pytest.mark.asyncio
async def test_sources_are_fetched_concurrently() -> None:
    names = [f"s{i}" for i in range(6)]
    router = _SlowRouter(0.15, {f"http://feeds.test/{name}": _single_item_rss(name) for name in names})
    registry = _registry(*((name, f"http://feeds.test/{name}") for name in names))

    started = time.perf_counter()
    envelope = await _digest(router, registry, settings=_settings(fetch_timeout_seconds=0.2))
    elapsed = time.perf_counter() - started

    assert len(envelope.items) == 6
    assert router.peak == 6
    # one delay, not six
    assert elapsed < 0.6


@pytest.mark.asyncio
async def test_redirects_are_resolved_concurrently() -> None:
    router = _SlowRouter(0.1, {"http://feeds.test/g": _rss_with_items(25, "g")})
    registry = _registry(("G", "http://feeds.test/g"))

    started = time.perf_counter()
    envelope = await _digest(router, registry, settings=_settings(fetch_timeout_seconds=1.0))
    elapsed = time.perf_counter() - started

    resolved = [item for item in envelope.items if item.link.startswith("https://publisher.test/")]
    assert len(resolved) == 20
    assert router.redirect_peak == 20
    # feed fetch plus one round of redirects, not twenty
    assert elapsed < 1.0


@pytest.mark.asyncio
async def test_cancelled_token_fails_every_source_without_requests() -> None:
    router = _Router({"http://feeds.test/a": RSS_A, "http://feeds.test/b": ATOM_B})
    registry = _registry(("A", "http://feeds.test/a"), ("B", "http://feeds.test/b"))
    token = CancellationToken()
    token.cancel("shutdown")

    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        envelope = await build_digest(
            registry,
            _settings(),
            client=client,
            resolver=LinkResolver(InMemoryRedirectCache(), client=client),
            token=token,
        )

    assert envelope.items == []
    assert envelope.sources == ["A", "B"]
    assert router.requests == []


@pytest.mark.asyncio
async def test_token_reaches_redirect_resolution() -> None:
    router = _Router({"http://feeds.test/g": RSS_GOOGLE})
    registry = _registry(("G", "http://feeds.test/g"))
    token = CancellationToken()
    cache = InMemoryRedirectCache()

    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        results = await collect_sources(registry, _settings(), client, token)
        items = [item for result in results for item in result.items]
        token.cancel("stop before resolving")
        outcomes = await resolve_links(items, LinkResolver(cache, client=client), token=token)

    assert "stop before resolving" in (outcomes[0].error or "")
    assert items[0].link == "https://news.google.com/rss/articles/abc"
    assert router.count("https://news.google.com/") == 0
    assert len(cache) == 0

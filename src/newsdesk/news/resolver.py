from __future__ import annotations

import asyncio
import logging
import threading
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

import httpx

from newsdesk.news.fetcher import (
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    CancellationToken,
    FetchResult,
    fetch_final_url,
)
from newsdesk.news.models import Item, ResolveOutcome

LOGGER = logging.getLogger(__name__)

REDIRECT_PATTERN = "news.google.com/rss/articles/"
DEFAULT_MAX_RESOLVE = 20

FinalUrlFetcher = Callable[..., Awaitable[FetchResult]]


class RedirectCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def __len__(self) -> int: ...


class InMemoryRedirectCache:
    """Write-once map from redirect URL to its final destination.

    ``max_entries=None`` never evicts, so the cache grows for as long as the
    process lives. With a bound, the oldest insertion is dropped first.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be positive or None")
        self.max_entries = max_entries
        self._data: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            if key in self._data:
                return
            self._data[key] = value
            if self.max_entries is not None:
                while len(self._data) > self.max_entries:
                    self._data.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


_process_cache: InMemoryRedirectCache | None = None


def get_process_cache(max_entries: int | None = None) -> InMemoryRedirectCache:
    """Cache shared by every run in this process; ``max_entries`` only applies on first use."""
    global _process_cache
    if _process_cache is None:
        _process_cache = InMemoryRedirectCache(max_entries=max_entries)
    return _process_cache


def is_redirect_link(url: str | None) -> bool:
    return bool(url) and REDIRECT_PATTERN in url


class LinkResolver:
    def __init__(
        self,
        cache: RedirectCache,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_USER_AGENT,
        fetcher: FinalUrlFetcher = fetch_final_url,
    ) -> None:
        self.cache = cache
        self.client = client
        self.timeout = timeout
        self.user_agent = user_agent
        self._fetcher = fetcher

    async def resolve(self, url: str, token: CancellationToken | None = None) -> ResolveOutcome:
        if not is_redirect_link(url):
            return ResolveOutcome(original=url, resolved=url)

        cached = self.cache.get(url)
        if cached is not None:
            return ResolveOutcome(original=url, resolved=cached, cached=True)

        try:
            result = await self._fetcher(
                url,
                timeout=self.timeout,
                client=self.client,
                token=token,
                user_agent=self.user_agent,
            )
        except Exception as exc:
            LOGGER.debug("Redirect resolve raised for %s: %s", url, exc)
            return ResolveOutcome(original=url, resolved=url, error=str(exc) or type(exc).__name__)

        if not result.ok:
            LOGGER.debug("Redirect resolve failed for %s: %s", url, result.error)
            return ResolveOutcome(original=url, resolved=url, error=result.error)

        resolved = result.final_url or url
        self.cache.set(url, resolved)
        return ResolveOutcome(original=url, resolved=resolved)


async def resolve_links(
    items: Sequence[Item],
    resolver: LinkResolver,
    limit: int = DEFAULT_MAX_RESOLVE,
    token: CancellationToken | None = None,
) -> list[ResolveOutcome]:
    """Resolve the first ``limit`` items concurrently, rewriting ``link`` in place."""
    targets = list(items[: max(limit, 0)])
    outcomes = await asyncio.gather(*(resolver.resolve(item.link, token) for item in targets))
    for item, outcome in zip(targets, outcomes, strict=True):
        item.link = outcome.resolved
    return list(outcomes)

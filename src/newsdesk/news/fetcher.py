from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from newsdesk.core.exceptions import FetchError

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0
DEFAULT_USER_AGENT = "newsdesk/1.0"

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation handle passed into every network call.

    Cancelling a token aborts only the calls it was handed to; there is no
    parent/child chaining.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(slots=True)
class FetchResult:
    url: str
    content: bytes = b""
    status_code: int | None = None
    final_url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise FetchError(f"Fetch failed for {self.url}: {self.error}")


@contextlib.asynccontextmanager
async def _client_scope(client: httpx.AsyncClient | None, timeout: float) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


async def run_with_deadline(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    token: CancellationToken | None = None,
) -> T:
    """Run one network operation under a fixed deadline and a cancellation token.

    Raises FetchError when the deadline expires or the token fires first; the
    in-flight operation is cancelled in both cases.
    """
    if token is not None and token.cancelled:
        raise FetchError(f"cancelled before start: {token.reason}")

    task = asyncio.ensure_future(operation())
    waiters: set[asyncio.Future] = {task}
    watcher = asyncio.ensure_future(token.wait()) if token is not None else None
    if watcher is not None:
        waiters.add(watcher)

    try:
        async with asyncio.timeout(timeout):
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    except TimeoutError as exc:
        raise FetchError(f"timed out after {timeout:g}s") from exc
    finally:
        if watcher is not None:
            watcher.cancel()
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if task.cancelled():
        reason = token.reason if token is not None else None
        raise FetchError(f"cancelled: {reason or 'no reason given'}")
    return task.result()


async def fetch(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    client: httpx.AsyncClient | None = None,
    token: CancellationToken | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchResult:
    """Single GET attempt returning the body, or a failed result. Never retries."""
    headers = {"User-Agent": user_agent}

    async with _client_scope(client, timeout) as http:

        async def _get() -> httpx.Response:
            response = await http.get(url, headers=headers, follow_redirects=True)
            response.raise_for_status()
            return response

        try:
            response = await run_with_deadline(_get, timeout=timeout, token=token)
        except httpx.HTTPStatusError as exc:
            return FetchResult(url=url, status_code=exc.response.status_code, error=f"HTTP {exc.response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL, FetchError) as exc:
            return FetchResult(url=url, error=str(exc) or type(exc).__name__)

    return FetchResult(
        url=url,
        content=response.content,
        status_code=response.status_code,
        final_url=str(response.url),
    )


async def fetch_final_url(
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    client: httpx.AsyncClient | None = None,
    token: CancellationToken | None = None,
    user_agent: str = DEFAULT_USER_AGENT,
) -> FetchResult:
    """Follow redirects for ``url`` and report where they end, without reading the body."""
    headers = {"User-Agent": user_agent}

    async with _client_scope(client, timeout) as http:

        async def _follow() -> tuple[int, str]:
            async with http.stream("GET", url, headers=headers, follow_redirects=True) as response:
                return response.status_code, str(response.url)

        try:
            status_code, final_url = await run_with_deadline(_follow, timeout=timeout, token=token)
        except (httpx.HTTPError, httpx.InvalidURL, FetchError) as exc:
            return FetchResult(url=url, error=str(exc) or type(exc).__name__)

    return FetchResult(url=url, status_code=status_code, final_url=final_url)

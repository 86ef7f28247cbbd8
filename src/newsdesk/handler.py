from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from newsdesk.core.config import Settings, get_settings
from newsdesk.news.models import SourceRegistry
from newsdesk.news.pipeline import build_digest
from newsdesk.news.resolver import LinkResolver
from newsdesk.news.sources import load_sources

LOGGER = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
FAILURE_MESSAGE = "Failed to fetch feeds"


@dataclass(slots=True)
class HandlerResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    def json(self) -> Any:
        return json.loads(self.body)


def _success_headers(settings: Settings) -> dict[str, str]:
    max_age = settings.cache_max_age_seconds
    return {
        "Content-Type": JSON_CONTENT_TYPE,
        "Cache-Control": f"public, max-age={max_age}, s-maxage={max_age}",
        "Access-Control-Allow-Origin": "*",
    }


def _failure_response() -> HandlerResponse:
    return HandlerResponse(
        status_code=500,
        headers={"Content-Type": JSON_CONTENT_TYPE, "Access-Control-Allow-Origin": "*"},
        body=json.dumps({"error": FAILURE_MESSAGE}),
    )


async def handle_request(
    settings: Settings | None = None,
    *,
    registry: SourceRegistry | None = None,
    resolver: LinkResolver | None = None,
) -> HandlerResponse:
    """Run the digest once and wrap it as a JSON HTTP response.

    Only errors outside per-source and per-item isolation reach this level;
    they become a 500 with a generic message.
    """
    try:
        settings = settings or get_settings()
        if registry is None:
            registry = load_sources(settings)
        envelope = await build_digest(registry, settings, resolver=resolver)
    except Exception:
        LOGGER.exception("Digest failed")
        return _failure_response()

    return HandlerResponse(
        status_code=200,
        headers=_success_headers(settings),
        body=json.dumps(envelope.to_dict(), ensure_ascii=False),
    )


def handler(settings: Settings | None = None) -> HandlerResponse:
    return asyncio.run(handle_request(settings))

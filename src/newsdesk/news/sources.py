from __future__ import annotations

import json
import logging
from importlib import resources
from pathlib import Path

from pydantic import ValidationError

from newsdesk.core.config import Settings
from newsdesk.core.exceptions import SourceConfigError
from newsdesk.news.models import SourceRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_SOURCES_RESOURCE = "sources.json"


def _read_sources_text(path: str | Path | None) -> str:
    if path is None:
        return resources.files("newsdesk").joinpath(DEFAULT_SOURCES_RESOURCE).read_text(encoding="utf-8")
    return Path(path).read_text(encoding="utf-8")


def parse_registry(raw: str) -> SourceRegistry:
    """Parse a source registry document.

    Accepts either ``{"sources": [...]}`` or a bare list of
    ``{name, url, country}`` objects. Order is preserved; it decides which
    duplicate wins during dedupe.
    """
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise SourceConfigError(f"Source registry is not valid JSON: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("sources", [])
    if not isinstance(data, list):
        raise SourceConfigError("Source registry must be a list or an object with a 'sources' list")

    try:
        return SourceRegistry(sources=tuple(data))
    except ValidationError as exc:
        raise SourceConfigError(f"Invalid source entry: {exc}") from exc


def load_sources(settings: Settings | None = None, path: str | Path | None = None) -> SourceRegistry:
    location = path if path is not None else (settings.sources_path if settings else None)
    try:
        raw = _read_sources_text(location)
    except OSError as exc:
        raise SourceConfigError(f"Cannot read source registry {location or DEFAULT_SOURCES_RESOURCE}: {exc}") from exc

    registry = parse_registry(raw)
    LOGGER.debug("Loaded %d sources from %s", len(registry.sources), location or DEFAULT_SOURCES_RESOURCE)
    return registry

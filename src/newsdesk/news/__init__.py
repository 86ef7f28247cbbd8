"""Feed aggregation pipeline."""

from newsdesk.news.models import Item, ResponseEnvelope, Source, SourceRegistry, SourceResult
from newsdesk.news.pipeline import build_digest, collect_sources

__all__ = ["Item", "ResponseEnvelope", "Source", "SourceRegistry", "SourceResult", "build_digest", "collect_sources"]

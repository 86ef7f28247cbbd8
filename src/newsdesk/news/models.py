from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

GLOBAL_COUNTRY = "🌐"


class Source(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    country: str = GLOBAL_COUNTRY

    @field_validator("country", mode="before")
    @classmethod
    def _default_country(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return GLOBAL_COUNTRY
        return str(value)


class SourceRegistry(BaseModel):
    model_config = ConfigDict(frozen=True)

    sources: tuple[Source, ...] = ()

    @property
    def names(self) -> list[str]:
        return [source.name for source in self.sources]


@dataclass(slots=True)
class Item:
    id: str
    title: str
    link: str
    summary: str
    published_at: str
    source: str
    feed_title: str
    country: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "title": self.title,
            "link": self.link,
            "summary": self.summary,
            "publishedAt": self.published_at,
            "source": self.source,
            "feedTitle": self.feed_title,
            "country": self.country,
        }


FeedKind = Literal["rss", "atom", "empty"]


@dataclass(slots=True)
class ParsedFeed:
    kind: FeedKind
    feed_title: str
    entries: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class SourceResult:
    source: Source
    items: list[Item] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class ResolveOutcome:
    original: str
    resolved: str
    cached: bool = False
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.resolved != self.original


@dataclass(slots=True)
class ResponseEnvelope:
    updated_at: str
    items: list[Item]
    sources: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "updatedAt": self.updated_at,
            "items": [item.to_dict() for item in self.items],
            "sources": list(self.sources),
        }


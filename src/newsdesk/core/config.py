from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    newsdesk_env: Literal["dev", "prod", "test"] = "dev"
    log_level: str = "INFO"

    # None means the bundled sources.json
    sources_path: str | None = None

    fetch_timeout_seconds: float = Field(default=8.0, gt=0.0, le=120.0)
    user_agent: str = "newsdesk/1.0"
    max_items: int = Field(default=60, ge=1, le=1000)
    max_resolve: int = Field(default=20, ge=0, le=200)
    redirect_cache_max_entries: int | None = Field(default=None, ge=1)
    cache_max_age_seconds: int = Field(default=15, ge=0, le=86400)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated

import typer

from newsdesk.core.config import Settings, get_settings
from newsdesk.core.exceptions import SourceConfigError
from newsdesk.core.logging import configure_logging
from newsdesk.handler import handle_request
from newsdesk.news.sources import load_sources

app = typer.Typer(help="newsdesk command-line interface")
LOGGER = logging.getLogger(__name__)


def _build_runtime(sources_path: Path | None = None) -> Settings:
    settings = get_settings()
    if sources_path is not None:
        settings = settings.model_copy(update={"sources_path": str(sources_path)})
    configure_logging(settings)
    return settings


@app.command("digest")
def digest_command(
    sources: Annotated[Path | None, typer.Option(help="Source registry JSON file")] = None,
    pretty: Annotated[bool, typer.Option(help="Indent the JSON output")] = False,
) -> None:
    settings = _build_runtime(sources)
    response = asyncio.run(handle_request(settings))

    payload = response.json()
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2 if pretty else None))
    if response.status_code != 200:
        raise typer.Exit(code=1)


@app.command("sources")
def sources_command(
    sources: Annotated[Path | None, typer.Option(help="Source registry JSON file")] = None,
) -> None:
    settings = _build_runtime(sources)
    try:
        registry = load_sources(settings)
    except SourceConfigError as exc:
        typer.echo(f"Cannot load sources: {exc}")
        raise typer.Exit(code=1) from None

    for source in registry.sources:
        typer.echo(f"{source.country}  {source.name}  {source.url}")


@app.command("healthcheck")
def healthcheck_command(
    sources: Annotated[Path | None, typer.Option(help="Source registry JSON file")] = None,
) -> None:
    settings = _build_runtime(sources)
    failed = False

    typer.echo(f"[INFO] ENV={settings.newsdesk_env}")

    try:
        registry = load_sources(settings)
        if registry.sources:
            typer.echo(f"[OK]  {len(registry.sources)} sources configured")
        else:
            typer.echo("[FAIL] source registry is empty")
            failed = True
    except SourceConfigError as exc:
        typer.echo(f"[FAIL] source registry ({exc})")
        failed = True

    if settings.redirect_cache_max_entries is None:
        typer.echo("[WARN] redirect cache is unbounded (set REDIRECT_CACHE_MAX_ENTRIES)")
    else:
        typer.echo(f"[OK]  redirect cache bounded at {settings.redirect_cache_max_entries}")

    if failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

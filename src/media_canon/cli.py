"""CLI for media-canon using Typer and Rich.

Resolve identifiers into canonical media records from the command line.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.table import Table

from media_canon.album_ids import encode_album_identifier
from media_canon.config import Config
from media_canon.console import (
    print as cprint,
)
from media_canon.console import (
    print_error,
    print_json,
    print_success,
    print_warning,
    set_console,
    status,
)
from media_canon.errors import Blocked, InvalidIdentifier, MediaCanonError, NotFound
from media_canon.hydration import MediaHydrator
from media_canon.models import CanonicalMediaRecord, MediaKind
from media_canon.safe_logging import configure_rich_logging
from media_canon.wikidata import WikidataClient, is_qid


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    TEXT = "text"
    JSON = "json"


class ExitCode:
    """Standard exit codes for CLI commands."""

    SUCCESS = 0
    ERROR = 1
    NOT_FOUND = 2


app = typer.Typer(
    name="media-canon",
    help="media-canon: cross-source media metadata reconciliation",
    no_args_is_help=True,
    add_completion=False,
)


class AppState:
    """Global application state passed between commands."""

    config: Config
    output_format: OutputFormat
    verbose: int


state = AppState()


@app.callback()
def main(
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to configuration TOML file", exists=True),
    ] = None,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", help="Output format"),
    ] = OutputFormat.TEXT,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    timeout: Annotated[float | None, typer.Option(help="HTTP timeout in seconds")] = None,
    min_interval: Annotated[
        float | None,
        typer.Option(help="Minimum seconds between MusicBrainz requests"),
    ] = None,
) -> None:
    """media-canon: resolve film, game, book and album ids into canonical records."""
    logger = logging.getLogger(__name__)

    # Load config (TOML + env vars)
    cfg = Config.load(config_path)

    # CLI > Env > Config File > Defaults
    if timeout is not None:
        cfg.http.timeout_s = timeout
    if min_interval is not None:
        cfg.musicbrainz.min_interval_s = min_interval

    if verbose > 0:
        log_level = logging.DEBUG if verbose >= 2 else logging.INFO
    else:
        log_level = getattr(logging, cfg.logging.level.upper(), logging.WARNING)

    console = configure_rich_logging(
        level=log_level,
        redact_secrets=cfg.logging.redact_secrets,
        show_time=True,
        show_path=False,
    )
    set_console(console)

    # Suppress external library logging unless very verbose (-vvv)
    if verbose < 3:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    if config_path:
        logger.info(f"Loaded config from {config_path}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}")

    state.config = cfg
    state.output_format = output
    state.verbose = verbose


def _render_record(record: CanonicalMediaRecord) -> None:
    cprint(f"[green]✓ {record.titles.get('DEFAULT')}[/green] [dim]({record.id})[/dim]")

    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Kind", record.kind.value)
    table.add_row("Year", str(record.year or "-"))
    table.add_row("Creator", record.primary_creator or "-")
    country = record.country or "-"
    if record.country_source:
        country += f" [dim]({record.country_source})[/dim]"
    table.add_row("Country", country)
    if isinstance(record.genres, list):
        table.add_row("Genres", ", ".join(record.genres) or "-")
    else:
        for lang, names in record.genres.items():
            table.add_row(f"Genres {lang}", ", ".join(names) or "-")
    for lang, title in record.titles.items():
        table.add_row(f"Title {lang}", title or "-")
    if record.tags:
        table.add_row("Tags", ", ".join(sorted(record.tags)))
    for provider, ext_id in record.external_ids.items():
        table.add_row(provider, ext_id)
    cprint(table)

    listing = record.track_listing
    if listing and listing.tracks:
        cprint("\n[bold]Tracks:[/bold]")
        for track in listing.tracks:
            cprint(f"  {track.position:>2}. {track.title} [dim]{track.length_display or ''}[/dim]")
        for section in listing.bonus_sections:
            cprint(f"\n[bold]Bonus: {section.title}[/bold]")
            for track in section.tracks:
                cprint(f"  {track.position:>2}. {track.title} [dim]{track.length_display or ''}[/dim]")


async def _resolve(kind: MediaKind, identifier: str) -> CanonicalMediaRecord:
    async with MediaHydrator(state.config) as hydrator:
        return await hydrator.resolve(kind, identifier)


@app.command()
def resolve(
    kind: Annotated[MediaKind, typer.Argument(help="Media kind")],
    identifier: Annotated[
        str,
        typer.Argument(help="Wikidata id (Q...) or, for albums, an album identifier"),
    ],
) -> None:
    """Resolve an identifier into a canonical media record.

    Examples:
        media-canon resolve film Q152456
        media-canon resolve album release-group:f5093c06-23e3-404f-aeaa-40f72885ee3a
        media-canon -o json resolve album 'artist-album:"The Beatles","Abbey Road"'
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Resolving {kind.value} {identifier}")

    try:
        with status(f"Resolving {identifier}..."):
            record = asyncio.run(_resolve(kind, identifier))
    except InvalidIdentifier as e:
        print_error(f"Invalid identifier: {e}")
        raise typer.Exit(code=ExitCode.ERROR) from e
    except NotFound as e:
        print_warning(f"Not found: {e}")
        raise typer.Exit(code=ExitCode.NOT_FOUND) from e
    except Blocked as e:
        print_error(f"Blocked: {e}")
        raise typer.Exit(code=ExitCode.ERROR) from e
    except (MediaCanonError, httpx.HTTPError) as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e

    if state.output_format == OutputFormat.JSON:
        print_json(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    else:
        _render_record(record)


async def _search(query: str, lang: str, limit: int) -> list[Any]:
    async with WikidataClient(state.config.wikidata, state.config.http) as wikidata:
        return await wikidata.search_entities(query, language=lang, limit=limit)


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Free-text search")],
    lang: Annotated[str, typer.Option(help="UI language (pt, en, es)")] = "pt-br",
    limit: Annotated[int, typer.Option(help="Max results")] = 10,
) -> None:
    """Search Wikidata items by text."""
    try:
        hits = asyncio.run(_search(query, lang, limit))
    except (MediaCanonError, httpx.HTTPError) as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e

    if state.output_format == OutputFormat.JSON:
        payload = [{"id": h.id, "label": h.label, "description": h.description} for h in hits]
        print_json(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        for hit in hits:
            cprint(f"[bold]{hit.id}[/bold]  {hit.label or ''} [dim]{hit.description or ''}[/dim]")

    if not hits:
        raise typer.Exit(code=ExitCode.NOT_FOUND)


async def _genre_root(qid: str, max_depth: int | None) -> str | None:
    cfg = state.config
    async with WikidataClient(cfg.wikidata, cfg.http) as wikidata:
        return await wikidata.resolve_genre_to_root(qid, cfg.wikidata.genre_roots, max_depth)


@app.command("genre-root")
def genre_root(
    qid: Annotated[str, typer.Argument(help="Genre Wikidata id")],
    max_depth: Annotated[int | None, typer.Option(help="Max subclass-of levels")] = None,
) -> None:
    """Fold a genre into one of the configured root genres."""
    if not is_qid(qid):
        print_error(f"Not a Wikidata id: {qid}")
        raise typer.Exit(code=ExitCode.ERROR)

    try:
        root = asyncio.run(_genre_root(qid, max_depth))
    except (MediaCanonError, httpx.HTTPError) as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e

    if state.output_format == OutputFormat.JSON:
        print_json(json.dumps({"genre": qid, "root": root}))
    elif root == qid:
        cprint(f"{qid} [dim](already canonical or no root reachable)[/dim]")
    else:
        print_success(f"{qid} -> {root}")


@app.command("album-id")
def album_id(
    artist: Annotated[str, typer.Argument(help="Artist name")],
    album: Annotated[str, typer.Argument(help="Album title")],
) -> None:
    """Print the artist-album identifier for a free-text pair."""
    try:
        encoded = encode_album_identifier(artist, album)
    except InvalidIdentifier as e:
        print_error(str(e))
        raise typer.Exit(code=ExitCode.ERROR) from e

    if state.output_format == OutputFormat.JSON:
        print_json(json.dumps({"identifier": encoded}))
    else:
        cprint(encoded, markup=False, highlight=False, soft_wrap=True)


# ====================================================================
# ENTRY POINT
# ====================================================================


def cli() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()

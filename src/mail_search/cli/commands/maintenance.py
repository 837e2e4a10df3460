"""Schema and index maintenance commands."""

from typing import Annotated, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from mail_search.cli.app import app
from mail_search.cli.commands.command_utils import get_session_maker, run_with_cleanup
from mail_search.config import ConfigManager
from mail_search.repository.embedding_repository import create_embedding_repository
from mail_search.repository.lexical_repository import create_lexical_repository
from mail_search.repository.query_embedding_cache_repository import (
    QueryEmbeddingCacheRepository,
)
from mail_search.schemas.search import EmbeddingStatus, EntityKind
from mail_search.services.initialization import initialize_database
from mail_search.services.query_embedding_cache import QueryEmbeddingCache

console = Console()


async def _init() -> None:
    app_config = ConfigManager().config
    await initialize_database(app_config)


@app.command()
def init() -> None:
    """Create the search schema (embedding tables, lexical index, query cache)."""
    try:
        run_with_cleanup(_init())
    except Exception as e:
        logger.exception("Schema initialization failed")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Schema ready[/green]")


async def _reindex(kind: Optional[EntityKind]) -> int:
    app_config = ConfigManager().config
    session_maker = await get_session_maker(app_config)
    lexical_repository = create_lexical_repository(session_maker, app_config)
    await lexical_repository.init_search_index()
    return await lexical_repository.rebuild(kind)


@app.command()
def reindex(
    kind: Annotated[
        Optional[EntityKind],
        typer.Option("--kind", "-k", help="Only rebuild this entity kind"),
    ] = None,
) -> None:
    """Rebuild the keyword index from the message, thread and claim tables."""
    try:
        count = run_with_cleanup(_reindex(kind))
    except Exception as e:
        logger.exception("Reindex failed")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    scope = kind.value if kind else "all kinds"
    console.print(f"[green]Indexed {count} rows ({scope})[/green]")


async def _status() -> dict:
    app_config = ConfigManager().config
    session_maker = await get_session_maker(app_config)
    embedding_repository = create_embedding_repository(session_maker, app_config)
    return {kind: await embedding_repository.status_counts(kind) for kind in EntityKind}


@app.command()
def status() -> None:
    """Show embedding counts per kind and status."""
    try:
        counts_by_kind = run_with_cleanup(_status())
    except Exception as e:
        logger.exception("Status failed")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title="Embeddings")
    table.add_column("Kind", style="cyan")
    for embedding_status in EmbeddingStatus:
        table.add_column(embedding_status.value, justify="right")
    table.add_column("total", justify="right", style="bold")

    for kind, counts in counts_by_kind.items():
        table.add_row(
            kind.value,
            *[str(counts.counts.get(s, 0)) for s in EmbeddingStatus],
            str(counts.total),
        )
    console.print(table)


async def _evict_cache() -> int:
    app_config = ConfigManager().config
    session_maker = await get_session_maker(app_config)
    cache = QueryEmbeddingCache(QueryEmbeddingCacheRepository(session_maker), app_config)
    return await cache.evict_expired()


@app.command("evict-cache")
def evict_cache() -> None:
    """Delete expired query embeddings."""
    try:
        removed = run_with_cleanup(_evict_cache())
    except Exception as e:
        logger.exception("Cache eviction failed")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"Evicted {removed} expired query embeddings")

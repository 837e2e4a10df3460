"""Search command for mail-search CLI."""

from typing import Annotated, List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from mail_search.cli.app import app
from mail_search.cli.commands.command_utils import get_session_maker, run_with_cleanup
from mail_search.config import ConfigManager
from mail_search.errors import EmbeddingRequiredError, MailSearchError
from mail_search.schemas.search import EntityKind, ScopeFilter, SearchQuery, SearchResponse
from mail_search.services.initialization import build_search_service

console = Console()


async def run_search(query: SearchQuery) -> SearchResponse:
    app_config = ConfigManager().config
    session_maker = await get_session_maker(app_config)
    service = build_search_service(session_maker, app_config)
    return await service.search_query(query)


def _title(item) -> str:
    if item.kind == "claim":
        return f"[{item.type}] {item.text}"
    return item.subject or item.snippet or ""


def display_results(response: SearchResponse) -> None:
    if not response.results:
        console.print("[yellow]No results[/yellow]")
        return

    table = Table(title=f"{response.entity_kind.value} results")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("RRF", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("Text")
    for position, result in enumerate(response.results, start=1):
        table.add_row(
            str(position),
            result.item.id,
            f"{result.rrf_score:.5f}",
            f"{result.vector_similarity:.3f}",
            _title(result.item),
        )
    console.print(table)


@app.command()
def search(
    kind: Annotated[EntityKind, typer.Argument(help="message, thread or claim")],
    query_text: Annotated[str, typer.Argument(help="Query text")],
    limit: Annotated[int, typer.Option("--limit", "-l", help="Maximum results")] = 10,
    vector_weight: Annotated[
        float, typer.Option("--vector-weight", "-w", help="Weight of the vector ranking (0-1)")
    ] = 0.5,
    account_id: Annotated[
        Optional[List[str]], typer.Option("--account-id", help="Restrict to account (repeatable)")
    ] = None,
    thread_id: Annotated[
        Optional[List[str]], typer.Option("--thread-id", help="Restrict to thread (repeatable)")
    ] = None,
    organization_id: Annotated[
        Optional[str], typer.Option("--organization-id", help="Restrict to organization")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
) -> None:
    """Hybrid search using the cached query embedding."""
    query = SearchQuery(
        entity_kind=kind,
        query_text=query_text,
        limit=limit,
        vector_weight=vector_weight,
        scope=ScopeFilter(
            account_ids=account_id,
            thread_ids=thread_id,
            organization_id=organization_id,
        ),
    )
    try:
        response = run_with_cleanup(run_search(query))
    except EmbeddingRequiredError:
        console.print(
            "[yellow]Embedding required:[/yellow] this query has no cached embedding. "
            "Embed it and store it in the query cache, then retry."
        )
        raise typer.Exit(code=2)
    except MailSearchError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)
    except Exception as e:  # pragma: no cover
        logger.exception("Search failed")
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1)

    if json_output:
        typer.echo(response.model_dump_json(indent=2))
    else:
        display_results(response)

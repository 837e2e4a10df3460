from typing import Optional

import typer

from mail_search import __version__
from mail_search.config import init_cli_logging


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:  # pragma: no cover
        typer.echo(f"mail-search version: {__version__}")
        raise typer.Exit()


app = typer.Typer(name="mail-search", help="Hybrid search over messages, threads and claims")


@app.callback()
def app_callback(
    ctx: typer.Context,
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Mail search - hybrid vector and keyword retrieval."""
    # CLI output goes to stdout; logs go to the log file only
    init_cli_logging()

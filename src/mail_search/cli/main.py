"""Main CLI entry point for mail-search."""  # pragma: no cover

from mail_search.cli.app import app  # pragma: no cover

# Register commands
from mail_search.cli.commands import (  # noqa: F401  # pragma: no cover
    maintenance,
    search,
)

if __name__ == "__main__":  # pragma: no cover
    app()

"""CLI commands for mail-search."""

from . import maintenance, search

__all__ = ["maintenance", "search"]

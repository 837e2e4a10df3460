"""Embedding provider protocol.

The engine never generates document embeddings. A provider is only used,
when one is injected, to embed a query whose vector is not cached.
"""

from typing import Protocol


class EmbeddingProvider(Protocol):
    """Minimal interface for a query embedding backend."""

    model_name: str
    dimensions: int

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        ...

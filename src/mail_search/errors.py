"""Error types raised by the retrieval engine."""


class MailSearchError(Exception):
    """Base class for retrieval engine errors."""


class DimensionMismatchError(MailSearchError, ValueError):
    """Raised when two vectors (or a vector and a store) disagree on dimensionality."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")


class InvalidArgumentError(MailSearchError, ValueError):
    """Raised for out-of-range arguments before any I/O happens."""


class InvalidStatusTransitionError(InvalidArgumentError):
    """Raised when an embedding status change is not allowed by the state machine."""


class EmbeddingRequiredError(MailSearchError):
    """The query embedding is not cached and no embedding provider is configured.

    Callers are expected to embed the query text themselves and either pass the
    vector to the search call or prime the query embedding cache.
    """

    def __init__(self, query_text: str):
        self.query_text = query_text
        super().__init__(
            "Embedding required: no cached embedding for this query. "
            "Pass query_vector or cache the query embedding first."
        )


class SearchBackendError(MailSearchError, RuntimeError):
    """A storage or query failure on one retrieval path."""

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"{path} retrieval failed: {cause}")

"""Models package for mail-search."""

from mail_search.models.base import Base
from mail_search.models.email import Claim, EmailAccount, EmailMessage, EmailThread
from mail_search.models.query_cache import QueryEmbeddingCacheEntry

__all__ = [
    "Base",
    "EmailAccount",
    "EmailThread",
    "EmailMessage",
    "Claim",
    "QueryEmbeddingCacheEntry",
]

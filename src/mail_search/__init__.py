"""mail-search - hybrid vector and keyword retrieval over email messages, threads and claims."""

__version__ = "0.1.0"

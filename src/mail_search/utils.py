"""Utility functions for mail-search."""

import hashlib
import os
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

WHITESPACE_PATTERN = re.compile(r"\s+")


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_to_stdout: bool = False,
    log_dir: Optional[Path] = None,
) -> None:  # pragma: no cover
    """Configure loguru sinks.

    Args:
        log_level: Minimum level for all sinks
        log_to_file: Write to a rotating log file under log_dir
        log_to_stdout: Write to stderr (stdout is left alone so CLI output stays clean)
        log_dir: Directory for the log file, defaults to ~/.mail-search
    """
    logger.remove()

    if log_to_file:
        directory = log_dir or Path(os.getenv("HOME", Path.home())) / ".mail-search"
        directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(directory / "mail-search.log"),
            level=log_level,
            rotation="10 MB",
            retention="10 days",
            backtrace=True,
            diagnose=False,
            enqueue=True,
            colorize=False,
        )

    if log_to_stdout:
        logger.add(sys.stderr, level=log_level, backtrace=True, diagnose=False, colorize=True)

    logger.debug(f"Logging configured level={log_level} file={log_to_file} stdout={log_to_stdout}")


def ensure_timezone_aware(value: datetime) -> datetime:
    """Return an aware datetime; naive values are stored as UTC and read back naive on SQLite."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_db_datetime(value) -> Optional[datetime]:
    """Coerce a timestamp column from raw SQL rows into an aware datetime.

    SQLite returns text for raw ``text()`` queries, Postgres returns datetimes.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_timezone_aware(value)
    return ensure_timezone_aware(datetime.fromisoformat(str(value)))


def calculate_input_hash(text: str) -> str:
    """Stable hash of embedding input text, used by producers to skip re-embedding."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_query_text(query_text: str) -> str:
    """Trim and collapse whitespace so equivalent queries share a cache key."""
    return WHITESPACE_PATTERN.sub(" ", query_text).strip()


def hash_query_text(query_text: str) -> str:
    """Cache key for a query string."""
    return calculate_input_hash(normalize_query_text(query_text))

"""Utility functions for CLI commands."""

import asyncio
from typing import Any, Coroutine, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search import db
from mail_search.config import MailSearchConfig

T = TypeVar("T")


def run_with_cleanup(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine and dispose the database engine afterwards."""

    async def _runner() -> T:
        try:
            return await coro
        finally:
            await db.shutdown_db()

    return asyncio.run(_runner())


async def get_session_maker(app_config: MailSearchConfig) -> async_sessionmaker[AsyncSession]:
    _, session_maker = await db.get_or_create_db(
        app_config.database_path,
        db_type=db.DatabaseType.from_config(app_config),
        database_url=app_config.database_url,
    )
    return session_maker

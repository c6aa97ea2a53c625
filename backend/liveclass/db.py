from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from psycopg import AsyncCursor
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings

pool = AsyncConnectionPool(
    conninfo=str(settings.database_url),
    min_size=1,
    max_size=settings.database_pool_max_size,
    open=False,
    kwargs={"autocommit": False},
)


@asynccontextmanager
async def get_conn() -> AsyncIterator[AsyncCursor]:
    """Cursor for a single unit of work; committed when the block exits cleanly."""
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            yield cur


@asynccontextmanager
async def transaction() -> AsyncIterator[AsyncCursor]:
    """
    Cursor bound to one explicit transaction.

    Everything executed on the cursor commits together, or rolls back together
    when the block raises.
    """
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.transaction():
            async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
                yield cur


@asynccontextmanager
async def savepoint(cur: AsyncCursor) -> AsyncIterator[AsyncCursor]:
    """Nested transaction on the cursor's connection; a failure only undoes the savepoint."""
    async with cur.connection.transaction():
        yield cur


__all__ = ["pool", "get_conn", "transaction", "savepoint"]

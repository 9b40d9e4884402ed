"""PostgreSQL query execution for alert rules (asyncpg)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time

import asyncpg

from .errors import QueryError

logger = logging.getLogger(__name__)

_POOL_MIN_SIZE = 1
_POOL_MAX_SIZE = 10
_POOL_MAX_IDLE_S = 5 * 60
_POOL_MAX_QUERIES = 50_000


@dataclass
class QueryResult:
    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, str | None]] = field(default_factory=list)


def to_text(value: object) -> str | None:
    """Render a column value the way it would read as query text output."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


async def create_pool(dsn: str) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        dsn=dsn,
        min_size=_POOL_MIN_SIZE,
        max_size=_POOL_MAX_SIZE,
        max_queries=_POOL_MAX_QUERIES,
        max_inactive_connection_lifetime=_POOL_MAX_IDLE_S,
    )


async def ping(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.fetchval("SELECT 1")


class QueryExecutor:
    """Runs rule queries on a shared pool and returns rows as text."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def execute(self, query: str, timeout_s: float) -> QueryResult:
        """Run ``query`` and return its columns and rows.

        Raises QueryError on any driver failure or when ``timeout_s`` expires;
        no partial rows are returned.
        """
        try:
            return await asyncio.wait_for(self._execute(query, timeout_s), timeout_s)
        except asyncio.TimeoutError as exc:
            raise QueryError(f"query timed out after {timeout_s:g}s") from exc
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            raise QueryError(f"query failed: {exc}") from exc

    async def _execute(self, query: str, timeout_s: float) -> QueryResult:
        async with self._pool.acquire() as conn:
            stmt = await conn.prepare(query, timeout=timeout_s)
            columns = [attr.name for attr in stmt.get_attributes()]
            records = await stmt.fetch(timeout=timeout_s)
        rows = [
            {col: to_text(record[idx]) for idx, col in enumerate(columns)}
            for record in records
        ]
        return QueryResult(columns=columns, rows=rows)


__all__ = ["QueryExecutor", "QueryResult", "create_pool", "ping", "to_text"]

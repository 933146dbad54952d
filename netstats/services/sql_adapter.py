from __future__ import annotations

import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)


class SqlSession:
    """Queries bound to one connection and one open transaction."""

    def __init__(self, conn: AsyncConnection[Any]) -> None:
        self._conn = conn

    async def fetch_rows(
        self,
        query: str,
        params: tuple[Any, ...] = (),
        statement_timeout_ms: int | None = None,
    ) -> list[dict[str, Any]]:
        started = time.perf_counter()
        async with self._conn.cursor(row_factory=dict_row) as cur:
            if statement_timeout_ms is not None:
                await cur.execute(f"SET LOCAL statement_timeout = {int(statement_timeout_ms)}")
            await cur.execute(query, params)
            rows = await cur.fetchall()
        _log_slow_query(started, query, len(rows), statement_timeout_ms)
        return rows

    async def fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> dict[str, Any]:
        rows = await self.fetch_rows(query, params)
        return rows[0] if rows else {}

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        started = time.perf_counter()
        async with self._conn.cursor() as cur:
            await cur.execute(query, params)
            rowcount = cur.rowcount
        _log_slow_query(started, query, rowcount, None)
        return rowcount


def _log_slow_query(
    started: float,
    query: str,
    row_count: int,
    statement_timeout_ms: int | None,
) -> None:
    if os.getenv("DB_LOG_SLOW_QUERIES", "0") != "1":
        return
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    threshold_ms = float(os.getenv("DB_SLOW_QUERY_THRESHOLD_MS", "200"))
    if elapsed_ms < threshold_ms:
        return
    compact_query = " ".join(query.split())
    query_preview = compact_query[:180]
    logger.warning(
        "Slow SQL query %.2fms rows=%s timeout_ms=%s sql=%s",
        elapsed_ms,
        row_count,
        statement_timeout_ms,
        query_preview,
    )


class SqlAdapter:
    """Async Postgres access for the ledger, independent from FastAPI."""

    def __init__(self) -> None:
        self._pool: AsyncConnectionPool | None = None
        self._pool_lock = asyncio.Lock()

    def _dsn(self) -> str:
        sslmode = os.getenv("DB_SSLMODE", "require")
        allowed_sslmodes = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}
        if sslmode not in allowed_sslmodes:
            sslmode = "require"
        connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", "5"))
        statement_timeout_ms = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "15000"))
        return (
            f"host={os.environ['DB_HOST']} "
            f"port={os.environ['DB_PORT']} "
            f"dbname={os.environ['DB_NAME']} "
            f"user={os.environ['DB_USER']} "
            f"password={os.environ['DB_PASSWORD']} "
            f"sslmode={sslmode} "
            f"connect_timeout={connect_timeout} "
            f"options='-c statement_timeout={statement_timeout_ms}'"
        )

    async def _get_pool(self) -> AsyncConnectionPool:
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    min_size = int(os.getenv("DB_POOL_MIN", "1"))
                    max_size = int(os.getenv("DB_POOL_MAX", "8"))
                    if max_size < min_size:
                        max_size = min_size
                    pool = AsyncConnectionPool(conninfo=self._dsn(), min_size=min_size, max_size=max_size, open=False)
                    await pool.open()
                    self._pool = pool
        return self._pool

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[SqlSession]:
        """Read-only transaction where every query sees the same database state."""
        pool = await self._get_pool()
        async with pool.connection() as conn:
            async with conn.transaction():
                await conn.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY")
                yield SqlSession(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SqlSession]:
        pool = await self._get_pool()
        async with pool.connection() as conn:
            async with conn.transaction():
                yield SqlSession(conn)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

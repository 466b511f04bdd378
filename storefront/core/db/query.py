"""
Statement helpers for units of work.

All helpers take parameterized SQL (``%s`` or ``%(name)s`` placeholders) and
an already checked-out connection. Passing ``None`` instead runs the statement
on its own connection from the default pool and commits it immediately.
Identifiers are never interpolated here.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

import aiomysql
from pydantic import BaseModel

from storefront.core.db.pool import connection_id, get_pool_manager
from storefront.core.errors import DatabaseError, QueryError, QueryTimeout, truncate_sql
from storefront.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

DEFAULT_QUERY_TIMEOUT_MS = 10000
SLOW_QUERY_THRESHOLD_MS = 1000

_defaults = {
    "timeout_ms": DEFAULT_QUERY_TIMEOUT_MS,
    "slow_query_ms": SLOW_QUERY_THRESHOLD_MS,
}

Params = Optional[Union[Sequence[Any], Mapping[str, Any]]]
Row = Dict[str, Any]


def configure(timeout_ms: Optional[float] = None, slow_query_ms: Optional[float] = None) -> None:
    """Set the default statement timeout and slow-query threshold."""
    if timeout_ms is not None:
        _defaults["timeout_ms"] = timeout_ms
    if slow_query_ms is not None:
        _defaults["slow_query_ms"] = slow_query_ms


class QueryResult(BaseModel):
    rowcount: int = 0
    lastrowid: Optional[int] = None


async def _run(
        conn: Any,
        sql: str,
        params: Params,
        handler: Callable[[Any], Awaitable[Any]],
        timeout_ms: Optional[float],
        slow_query_ms: Optional[float],
) -> Any:
    timeout_ms = _defaults["timeout_ms"] if timeout_ms is None else timeout_ms
    slow_query_ms = _defaults["slow_query_ms"] if slow_query_ms is None else slow_query_ms

    async def _statement():
        async with conn.cursor(aiomysql.DictCursor) as cur:
            await cur.execute(sql, params)
            return await handler(cur)

    start = time.perf_counter()
    try:
        result = await asyncio.wait_for(_statement(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        raise QueryTimeout(sql, timeout_ms) from None
    except DatabaseError:
        raise
    except Exception as e:
        raise QueryError(sql, e) from e

    duration = (time.perf_counter() - start) * 1000
    if duration > slow_query_ms:
        logger.warning(f"Slow query ({duration:.2f}ms): {truncate_sql(sql)}")
    return result


async def _run_standalone(sql: str, params: Params, handler, timeout_ms, slow_query_ms) -> Any:
    async with get_pool_manager().connection() as conn:
        try:
            result = await _run(conn, sql, params, handler, timeout_ms, slow_query_ms)
            await conn.commit()
            return result
        except BaseException:
            try:
                await conn.rollback()
            except Exception as e:
                logger.warning(f"Rollback failed on connection {connection_id(conn)}: {e}")
            raise


async def _dispatch(conn, sql, params, handler, timeout_ms, slow_query_ms) -> Any:
    if conn is None:
        return await _run_standalone(sql, params, handler, timeout_ms, slow_query_ms)
    return await _run(conn, sql, params, handler, timeout_ms, slow_query_ms)


async def execute(
        conn: Optional[Any],
        sql: str,
        params: Params = None,
        *,
        timeout_ms: Optional[float] = None,
        slow_query_ms: Optional[float] = None,
) -> QueryResult:
    """Run a write/DDL statement and report affected rows and the last insert id."""

    async def _result(cur) -> QueryResult:
        return QueryResult(rowcount=max(cur.rowcount or 0, 0), lastrowid=cur.lastrowid or None)

    return await _dispatch(conn, sql, params, _result, timeout_ms, slow_query_ms)


async def fetch_all(
        conn: Optional[Any],
        sql: str,
        params: Params = None,
        *,
        timeout_ms: Optional[float] = None,
        slow_query_ms: Optional[float] = None,
) -> List[Row]:
    async def _rows(cur) -> List[Row]:
        return list(await cur.fetchall())

    return await _dispatch(conn, sql, params, _rows, timeout_ms, slow_query_ms)


async def fetch_one(
        conn: Optional[Any],
        sql: str,
        params: Params = None,
        *,
        timeout_ms: Optional[float] = None,
        slow_query_ms: Optional[float] = None,
) -> Optional[Row]:
    async def _row(cur) -> Optional[Row]:
        return await cur.fetchone()

    return await _dispatch(conn, sql, params, _row, timeout_ms, slow_query_ms)


__all__ = [
    "QueryResult",
    "configure",
    "execute",
    "fetch_all",
    "fetch_one",
    "DEFAULT_QUERY_TIMEOUT_MS",
    "SLOW_QUERY_THRESHOLD_MS",
]

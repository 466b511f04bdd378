"""
Transactional execution of units of work.

A unit of work is ``async def work(conn) -> T``: it runs statements on the
connection it is given and never begins, commits or rolls back itself.

    async def add_tag(conn):
        result = await execute(conn, "INSERT INTO tags (name) VALUES (%s)", ("sale",))
        return result.lastrowid

    tag_id = await run_in_transaction(add_tag)

Every attempt checks out a fresh connection, and the connection is released
exactly once per attempt whatever the outcome. Deadlocks and lock wait
timeouts re-run the whole unit of work with linear backoff.
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from storefront.core.db.pool import ConnectionPoolManager, connection_id, get_pool_manager
from storefront.core.errors import (
    MaxRetriesExceeded,
    TransactionFailed,
    TransactionTimeout,
    is_transient,
)
from storefront.core.logger import LoggingContext, setup_logger

logger = setup_logger(__name__, include_location=True)

T = TypeVar("T")
UnitOfWork = Callable[[Any], Awaitable[T]]

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_BACKOFF_MS = 100


class TransactionExecutor:
    """Runs units of work inside retrying transactions on one pool manager."""

    def __init__(self, pool: Optional[ConnectionPoolManager] = None):
        self._pool = pool

    @property
    def pool(self) -> ConnectionPoolManager:
        return self._pool if self._pool is not None else get_pool_manager()

    async def run(
            self,
            unit_of_work: UnitOfWork,
            max_retries: int = DEFAULT_MAX_RETRIES,
            base_backoff_ms: float = DEFAULT_BASE_BACKOFF_MS,
            *,
            timeout_ms: Optional[float] = None,
            operation: Optional[str] = None,
    ) -> T:
        """
        Run ``unit_of_work`` in a transaction, retrying on transient conflicts.

        Args:
            unit_of_work: coroutine function receiving the connection
            max_retries: total number of attempts (>= 1)
            base_backoff_ms: wait before attempt n+1 is base_backoff_ms * n
            timeout_ms: optional time budget for each run of the unit of work
            operation: name used in logs and error messages

        Raises:
            AcquireTimeout, PoolUnavailable, ConnectionLost: from acquisition, never retried
            TransactionFailed: non-transient failure, already rolled back
            MaxRetriesExceeded: every attempt hit a deadlock or lock wait timeout
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        operation = operation or getattr(unit_of_work, "__name__", "transaction")
        pool = self.pool
        last_error: Optional[BaseException] = None

        for attempt in range(1, max_retries + 1):
            with LoggingContext(logger, operation=operation, attempt=attempt):
                conn = await pool.acquire()
                logger.debug(f"Transaction attempt {attempt}/{max_retries} on connection {connection_id(conn)}")
                try:
                    return await self._attempt(conn, unit_of_work, timeout_ms, operation)
                except Exception as e:
                    last_error = e
                finally:
                    pool.release(conn)

                if not is_transient(last_error):
                    logger.error(f"Database operation failed: {last_error}")
                    raise TransactionFailed(last_error, operation) from last_error

                if attempt < max_retries:
                    wait_ms = base_backoff_ms * attempt
                    logger.warning(
                        f"Transient conflict detected. Retrying in {wait_ms}ms... ({attempt}/{max_retries}): {last_error}"
                    )
                    await asyncio.sleep(wait_ms / 1000)

        logger.error(f"Transaction failed after {max_retries} attempts: {last_error}")
        raise MaxRetriesExceeded(last_error, max_retries, operation) from last_error

    async def _attempt(
            self,
            conn: Any,
            unit_of_work: UnitOfWork,
            timeout_ms: Optional[float],
            operation: str,
    ) -> T:
        try:
            await conn.begin()
            if timeout_ms is None:
                result = await unit_of_work(conn)
            else:
                try:
                    result = await asyncio.wait_for(unit_of_work(conn), timeout=timeout_ms / 1000)
                except asyncio.TimeoutError:
                    raise TransactionTimeout(f"unit of work exceeded {timeout_ms}ms", operation) from None
            await conn.commit()
            return result
        except BaseException:
            await self._rollback(conn)
            raise

    async def _rollback(self, conn: Any) -> None:
        try:
            await conn.rollback()
        except Exception as e:
            logger.warning(f"Rollback failed on connection {connection_id(conn)}: {e}")


async def run_in_transaction(
        unit_of_work: UnitOfWork,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_backoff_ms: float = DEFAULT_BASE_BACKOFF_MS,
        *,
        timeout_ms: Optional[float] = None,
        operation: Optional[str] = None,
        pool: Optional[ConnectionPoolManager] = None,
) -> T:
    """Run a unit of work on ``pool`` (default: the process-wide manager)."""
    return await TransactionExecutor(pool).run(
        unit_of_work,
        max_retries,
        base_backoff_ms,
        timeout_ms=timeout_ms,
        operation=operation,
    )


__all__ = [
    "TransactionExecutor",
    "run_in_transaction",
    "UnitOfWork",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_BACKOFF_MS",
]

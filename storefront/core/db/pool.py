"""
MySQL connection pool manager.

One ConnectionPoolManager owns one native aiomysql pool and moves through

    UNINITIALIZED -> INITIALIZING -> READY -> SHUTTING_DOWN -> CLOSED

CLOSED may go back to INITIALIZING when the process wants to reconnect.
Only READY hands out connections.

The process-wide default manager is reached through get_pool_manager(); pass
an explicit manager to TransactionExecutor/SchemaBootstrapper to avoid it.
"""
import asyncio
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set, Union

import aiomysql
from pydantic import BaseModel

from storefront.core.config import DatabaseSettings, build_database_settings, get_database_settings
from storefront.core.errors import (
    AcquireTimeout,
    ConnectionLost,
    PoolInitError,
    PoolUnavailable,
    QueueLimitReached,
)
from storefront.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

PoolFactory = Callable[..., Awaitable[Any]]
ConfigLike = Union[DatabaseSettings, Mapping[str, Any]]


class PoolState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    SHUTTING_DOWN = "shutting_down"
    CLOSED = "closed"


class PoolStats(BaseModel):
    """Diagnostic snapshot; counters only ever grow."""

    name: str
    state: PoolState
    acquired: int = 0
    released: int = 0
    errors: int = 0
    timeouts: int = 0
    reclaimed: int = 0
    in_use: int = 0
    waiting: int = 0
    size: int = 0
    free: int = 0


def connection_id(conn: Any) -> Optional[int]:
    """Server thread id of a connection, for log lines."""
    thread_id = getattr(conn, "thread_id", None)
    return thread_id() if callable(thread_id) else thread_id


class ConnectionPoolManager:
    """Owns a single native connection pool for the lifetime of a process."""

    def __init__(
            self,
            config: Optional[ConfigLike] = None,
            pool_factory: Optional[PoolFactory] = None,
            name: str = "storefront",
    ):
        self.name = name
        self._config: Optional[DatabaseSettings] = build_database_settings(config) if config is not None else None
        self._pool_factory: PoolFactory = pool_factory or aiomysql.create_pool
        self._pool = None
        self._state = PoolState.UNINITIALIZED
        self._lock = asyncio.Lock()
        self._checked_out: Set[Any] = set()
        self._acquisitions: Set[asyncio.Future] = set()
        self._waiting = 0
        self._counters: Dict[str, int] = {
            "acquired": 0,
            "released": 0,
            "errors": 0,
            "timeouts": 0,
            "reclaimed": 0,
        }

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def config(self) -> Optional[DatabaseSettings]:
        return self._config

    def _resolve_config(self, config: Optional[ConfigLike]) -> DatabaseSettings:
        if config is not None:
            return build_database_settings(config)
        if self._config is not None:
            return self._config
        return get_database_settings()

    async def initialize(self, config: Optional[ConfigLike] = None) -> "ConnectionPoolManager":
        """
        Create the native pool if absent and verify it with one health check.

        Safe to call concurrently: only one native pool is ever constructed.

        Raises:
            ConfigError: configuration missing or invalid
            PoolInitError: pool creation or the health check failed
            PoolUnavailable: called while shutting down
        """
        async with self._lock:
            if self._state == PoolState.READY:
                return self
            if self._state == PoolState.SHUTTING_DOWN:
                raise PoolUnavailable("Cannot initialize pool during shutdown", "initialize")

            settings = self._resolve_config(config)
            self._state = PoolState.INITIALIZING
            logger.info(
                f"Creating MySQL pool {self.name}: {settings.dsn} | "
                f"Config: max={settings.max_connections}, queue_limit={settings.queue_limit}, "
                f"connect_timeout={settings.connect_timeout_ms}ms, idle_timeout={settings.idle_timeout_ms}ms, "
                f"keep_alive={settings.keep_alive}"
            )

            try:
                pool = await self._pool_factory(**settings.pool_kwargs())
            except Exception as e:
                self._state = PoolState.UNINITIALIZED
                self._counters["errors"] += 1
                logger.error(f"Failed to create MySQL pool {self.name}: {e}")
                raise PoolInitError(f"Failed to create connection pool for {settings.dsn}: {e}", "initialize") from e

            try:
                await self._check_health(pool, settings)
            except Exception as e:
                self._counters["errors"] += 1
                await self._terminate(pool)
                if self._state == PoolState.INITIALIZING:
                    self._state = PoolState.UNINITIALIZED
                logger.error(f"Health check failed for MySQL pool {self.name}: {e}")
                raise PoolInitError(f"Failed to initialize healthy connection pool: {e}", "initialize") from e

            if self._state == PoolState.SHUTTING_DOWN:
                await self._terminate(pool)
                raise PoolUnavailable("Pool shutdown started during initialization", "initialize")

            self._pool = pool
            self._config = settings
            self._state = PoolState.READY
            logger.info(f"MySQL pool {self.name} ready")
            return self

    async def _check_health(self, pool: Any, settings: DatabaseSettings) -> None:
        conn = await asyncio.wait_for(pool.acquire(), timeout=settings.connect_timeout_ms / 1000)
        try:
            await conn.ping(reconnect=False)
        finally:
            pool.release(conn)

    async def _terminate(self, pool: Any) -> None:
        try:
            pool.terminate()
            await pool.wait_closed()
        except Exception as e:
            self._counters["errors"] += 1
            logger.warning(f"Error during pool termination: {e}")

    async def _ensure_ready(self) -> None:
        if self._state in (PoolState.SHUTTING_DOWN, PoolState.CLOSED):
            raise PoolUnavailable(f"Connection pool not available (state={self._state.value})", "acquire")
        if self._state == PoolState.INITIALIZING:
            async with self._lock:
                pass
        if self._state == PoolState.UNINITIALIZED:
            if self._config is None:
                raise PoolUnavailable("Connection pool is not initialized. Call initialize() first.", "acquire")
            try:
                await self.initialize(self._config)
            except PoolInitError as e:
                raise PoolUnavailable(f"Lazy pool initialization failed: {e}", "acquire") from e
        if self._state != PoolState.READY:
            raise PoolUnavailable(f"Connection pool not available (state={self._state.value})", "acquire")

    async def acquire(self, timeout_ms: Optional[float] = None) -> Any:
        """
        Check out a live connection.

        The native acquisition races a timer. If the timer wins, the caller gets
        AcquireTimeout and the connection, should it arrive later, goes straight
        back to the pool.

        Raises:
            AcquireTimeout: nothing became available within timeout_ms
            QueueLimitReached: too many tasks already waiting
            PoolUnavailable: pool uninitialized, shutting down or closed
            ConnectionLost: the checked-out connection failed its ping
        """
        await self._ensure_ready()
        settings = self._config
        pool = self._pool
        if timeout_ms is None:
            timeout_ms = settings.acquire_timeout_ms

        if settings.queue_limit and self._waiting >= settings.queue_limit:
            self._counters["errors"] += 1
            logger.warning(f"Queue limit reached on pool {self.name}: {self._waiting} waiting")
            raise QueueLimitReached(settings.queue_limit)

        # shutdown() cancels every native acquisition still in flight
        task = asyncio.ensure_future(pool.acquire())
        self._acquisitions.add(task)
        task.add_done_callback(self._acquisitions.discard)
        self._waiting += 1
        if self._waiting > 1:
            logger.debug(f"Waiting for available connection slot ({self._waiting} waiting)")
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            self._reclaim_when_done(task, pool)
            raise
        finally:
            self._waiting -= 1

        if not done:
            self._counters["timeouts"] += 1
            self._counters["errors"] += 1
            self._reclaim_when_done(task, pool)
            if self._state != PoolState.READY:
                raise PoolUnavailable("Pool shutdown started during acquisition", "acquire")
            logger.warning(f"Connection acquisition timed out after {timeout_ms}ms on pool {self.name}")
            raise AcquireTimeout(timeout_ms)

        if task.cancelled():
            raise PoolUnavailable("Pool shutdown started during acquisition", "acquire")
        try:
            conn = task.result()
        except Exception as e:
            self._counters["errors"] += 1
            raise PoolUnavailable(f"Failed to get connection: {e}", "acquire") from e

        if self._state != PoolState.READY:
            self._return_native(pool, conn)
            raise PoolUnavailable("Pool shutdown started during acquisition", "acquire")

        try:
            await conn.ping(reconnect=settings.keep_alive)
        except Exception as e:
            self._counters["errors"] += 1
            conn.close()
            self._return_native(pool, conn)
            logger.warning(f"Connection {connection_id(conn)} failed health check: {e}")
            raise ConnectionLost(f"Failed to get healthy connection: {e}", "acquire") from e

        self._checked_out.add(conn)
        self._counters["acquired"] += 1
        logger.debug(f"Connection acquired (ID: {connection_id(conn)})")
        return conn

    def _reclaim_when_done(self, task: asyncio.Future, pool: Any) -> None:
        """Release a connection whose acquisition finished after its caller gave up."""

        def _reclaim(fut: asyncio.Future) -> None:
            if fut.cancelled() or fut.exception() is not None:
                return
            conn = fut.result()
            self._return_native(pool, conn)
            self._counters["reclaimed"] += 1
            logger.debug(f"Late connection returned to pool (ID: {connection_id(conn)})")

        task.add_done_callback(_reclaim)

    def _return_native(self, pool: Any, conn: Any) -> None:
        # a terminated pool no longer tracks its connections
        if pool is self._pool:
            pool.release(conn)
        else:
            conn.close()

    def release(self, conn: Any) -> bool:
        """
        Return a connection to the pool. Idempotent.

        Releasing an unknown or already released connection, or releasing
        after shutdown began, is logged and ignored.
        """
        if conn not in self._checked_out:
            logger.debug(f"Ignoring release of connection {connection_id(conn)}: not checked out")
            return False
        self._checked_out.discard(conn)

        if self._state in (PoolState.SHUTTING_DOWN, PoolState.CLOSED) or self._pool is None:
            logger.debug(f"Ignoring release of connection {connection_id(conn)}: pool is {self._state.value}")
            return False

        try:
            self._pool.release(conn)
        except Exception as e:
            self._counters["errors"] += 1
            logger.warning(f"Error releasing connection {connection_id(conn)}: {e}")
            return False

        self._counters["released"] += 1
        logger.debug(f"Connection released (ID: {connection_id(conn)})")
        return True

    @asynccontextmanager
    async def connection(self, timeout_ms: Optional[float] = None):
        """Acquire a connection for the duration of an ``async with`` block."""
        conn = await self.acquire(timeout_ms)
        try:
            yield conn
        finally:
            self.release(conn)

    async def shutdown(self) -> None:
        """Close every connection and the native pool. Idempotent."""
        if self._state in (PoolState.SHUTTING_DOWN, PoolState.CLOSED):
            return
        self._state = PoolState.SHUTTING_DOWN
        for task in list(self._acquisitions):
            task.cancel()

        async with self._lock:
            pool, self._pool = self._pool, None
            try:
                if pool is not None:
                    stats = self.stats()
                    logger.info(
                        f"Starting graceful shutdown of pool {self.name} | "
                        f"Connection stats - Acquired: {stats.acquired}, Released: {stats.released}, "
                        f"Errors: {stats.errors}, In use: {stats.in_use}"
                    )
                    try:
                        pool.terminate()
                        await pool.wait_closed()
                    except Exception as e:
                        self._counters["errors"] += 1
                        raise PoolUnavailable(f"Failed to close pool: {e}", "shutdown") from e
                    logger.info(f"Pool {self.name} closed gracefully")
            finally:
                self._checked_out.clear()
                self._state = PoolState.CLOSED

    def stats(self) -> PoolStats:
        pool = self._pool
        return PoolStats(
            name=self.name,
            state=self._state,
            in_use=len(self._checked_out),
            waiting=self._waiting,
            size=getattr(pool, "size", 0) if pool is not None else 0,
            free=getattr(pool, "freesize", 0) if pool is not None else 0,
            **self._counters,
        )


_manager: Optional[ConnectionPoolManager] = None


def get_pool_manager() -> ConnectionPoolManager:
    """Return the process-wide pool manager, creating an uninitialized one if needed."""
    global _manager
    if _manager is None:
        _manager = ConnectionPoolManager()
    return _manager


def set_pool_manager(manager: Optional[ConnectionPoolManager]) -> Optional[ConnectionPoolManager]:
    """Install a pool manager as the process default; returns the previous one."""
    global _manager
    previous, _manager = _manager, manager
    return previous


async def init_pool(config: Optional[ConfigLike] = None) -> ConnectionPoolManager:
    """Initialize the default pool manager. Safe to call multiple times."""
    return await get_pool_manager().initialize(config)


async def close_pool() -> None:
    """Shut down the default pool manager, if one exists."""
    if _manager is not None:
        await _manager.shutdown()


__all__ = [
    "PoolState",
    "PoolStats",
    "ConnectionPoolManager",
    "connection_id",
    "get_pool_manager",
    "set_pool_manager",
    "init_pool",
    "close_pool",
]

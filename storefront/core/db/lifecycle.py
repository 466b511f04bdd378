"""
Process startup and shutdown for the database layer.

    async def main():
        pool = await startup()
        install_signal_handlers(asyncio.get_running_loop(), pool)
        ...
        await shutdown(pool)
"""
import asyncio
import re
import signal
from typing import Any, Awaitable, Callable, Optional, Sequence

import aiomysql

from storefront.core.config import DatabaseSettings, get_database_settings
from storefront.core.db import query
from storefront.core.db.pool import ConfigLike, ConnectionPoolManager, get_pool_manager
from storefront.core.db.schema import SchemaBootstrapper
from storefront.core.db.tables import SCHEMA_STATEMENTS, SCHEMA_VERSION
from storefront.core.errors import ConfigError, UnsafeIdentifierError
from storefront.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

_DATABASE_NAME = re.compile(r"^[A-Za-z0-9_]+$")


async def ensure_database_exists(
        settings: Optional[DatabaseSettings] = None,
        connect: Callable[..., Awaitable[Any]] = aiomysql.connect,
) -> None:
    """Create the configured database on the server when it is missing."""
    settings = settings or get_database_settings()
    name = settings.database
    if not _DATABASE_NAME.match(name):
        raise UnsafeIdentifierError(f"invalid database name {name!r}", "ensure_database_exists")

    conn = await connect(**settings.server_kwargs())
    try:
        async with conn.cursor() as cur:
            await cur.execute(
                f"CREATE DATABASE IF NOT EXISTS `{name}` "
                f"CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci"
            )
        logger.info(f"Database {name} ensured on {settings.host}:{settings.port}")
    finally:
        conn.close()


async def startup(
        settings: Optional[ConfigLike] = None,
        statements: Sequence[str] = SCHEMA_STATEMENTS,
        target_version: int = SCHEMA_VERSION,
        pool: Optional[ConnectionPoolManager] = None,
) -> ConnectionPoolManager:
    """
    Initialize the pool and bring the schema up to date.

    Any failure propagates; the process should not serve requests without a
    healthy pool and a current schema.
    """
    pool = pool or get_pool_manager()
    await pool.initialize(settings)
    config = pool.config
    if config is None:
        raise ConfigError("pool initialized without settings", "startup")
    query.configure(config.query_timeout_ms, config.slow_query_ms)

    bootstrapper = SchemaBootstrapper(pool=pool)
    await bootstrapper.migrate_if_needed(None, target_version, statements)
    logger.success(f"Database layer started on {config.dsn}")
    return pool


async def shutdown(pool: Optional[ConnectionPoolManager] = None) -> None:
    pool = pool or get_pool_manager()
    await pool.shutdown()


def install_signal_handlers(
        loop: asyncio.AbstractEventLoop,
        pool: Optional[ConnectionPoolManager] = None,
) -> None:
    """Shut the pool down on SIGINT/SIGTERM."""
    pool = pool or get_pool_manager()

    def _signal_handler(sig):
        logger.info(f"Received signal {sig}; shutting down database pool")
        loop.create_task(pool.shutdown())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: _signal_handler(s))


__all__ = [
    "ensure_database_exists",
    "startup",
    "shutdown",
    "install_signal_handlers",
]

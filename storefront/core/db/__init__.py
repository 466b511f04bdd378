"""MySQL pool, transactions and schema bootstrap."""

from storefront.core.db.pool import (
    ConnectionPoolManager,
    PoolState,
    PoolStats,
    close_pool,
    get_pool_manager,
    init_pool,
    set_pool_manager,
)
from storefront.core.db.query import QueryResult, execute, fetch_all, fetch_one
from storefront.core.db.transaction import TransactionExecutor, run_in_transaction
from storefront.core.db.schema import SchemaBootstrapper, ensure_schema, migrate_if_needed, validate_statements
from storefront.core.db.junction import JUNCTION_TABLES, map_entity_to_entity
from storefront.core.db.tables import SCHEMA_STATEMENTS, SCHEMA_VERSION
from storefront.core.db.lifecycle import ensure_database_exists, install_signal_handlers, shutdown, startup

__all__ = [
    "ConnectionPoolManager",
    "PoolState",
    "PoolStats",
    "close_pool",
    "get_pool_manager",
    "init_pool",
    "set_pool_manager",
    "QueryResult",
    "execute",
    "fetch_all",
    "fetch_one",
    "TransactionExecutor",
    "run_in_transaction",
    "SchemaBootstrapper",
    "ensure_schema",
    "migrate_if_needed",
    "validate_statements",
    "JUNCTION_TABLES",
    "map_entity_to_entity",
    "SCHEMA_STATEMENTS",
    "SCHEMA_VERSION",
    "ensure_database_exists",
    "install_signal_handlers",
    "shutdown",
    "startup",
]

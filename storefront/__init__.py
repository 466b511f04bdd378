"""
storefront
==========

Database-access layer for the storefront: pooled MySQL connections,
retrying transactions and idempotent schema bootstrap.
"""

__version__ = "0.3.0"

from storefront.core.db import (
    ConnectionPoolManager,
    TransactionExecutor,
    SchemaBootstrapper,
    get_pool_manager,
    init_pool,
    close_pool,
    run_in_transaction,
    ensure_schema,
    migrate_if_needed,
)

__all__ = [
    "ConnectionPoolManager",
    "TransactionExecutor",
    "SchemaBootstrapper",
    "get_pool_manager",
    "init_pool",
    "close_pool",
    "run_in_transaction",
    "ensure_schema",
    "migrate_if_needed",
]

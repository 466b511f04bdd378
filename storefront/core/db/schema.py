"""
Idempotent schema bootstrap.

The statement list is applied in order inside one transaction through the
retrying executor. Every statement must be safe to run again:

- ``CREATE TABLE`` needs ``IF NOT EXISTS``
- seed ``INSERT`` needs ``INSERT IGNORE``, ``ON DUPLICATE KEY UPDATE`` or a
  ``WHERE NOT EXISTS`` guard

"Already exists" errors are skipped; anything else aborts the bootstrap with
SchemaBootstrapError. MySQL commits most DDL implicitly, so a crash part way
through is recovered by running the whole list again.
"""
import re
from typing import Any, Optional, Sequence

from storefront.core.db.pool import ConnectionPoolManager
from storefront.core.db.query import execute, fetch_one
from storefront.core.db.transaction import TransactionExecutor
from storefront.core.errors import (
    SchemaBootstrapError,
    TransactionFailed,
    is_already_exists,
    is_transient,
    truncate_sql,
)
from storefront.core.logger import setup_logger

logger = setup_logger(__name__, include_location=True)

SCHEMA_VERSION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INT NOT NULL UNIQUE,
    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
) ENGINE=InnoDB CHARSET=utf8mb4 COLLATE=utf8mb4_general_ci COMMENT='Applied schema versions'
"""
READ_VERSION_SQL = "SELECT MAX(version) AS current_version FROM schema_version"
WRITE_VERSION_SQL = "INSERT IGNORE INTO schema_version (version) VALUES (%s)"

_CREATE_TABLE = re.compile(r"^\s*CREATE\s+(?:TEMPORARY\s+)?TABLE\b", re.IGNORECASE)
_CREATE_TABLE_GUARDED = re.compile(r"^\s*CREATE\s+(?:TEMPORARY\s+)?TABLE\s+IF\s+NOT\s+EXISTS\b", re.IGNORECASE)
_INSERT = re.compile(r"^\s*INSERT\b", re.IGNORECASE)
_INSERT_GUARDED = re.compile(
    r"^\s*INSERT\s+IGNORE\b|\bON\s+DUPLICATE\s+KEY\s+UPDATE\b|\bWHERE\s+NOT\s+EXISTS\b",
    re.IGNORECASE,
)


def _strip_comments(statement: str) -> str:
    lines = [line for line in statement.splitlines() if not line.strip().startswith("--")]
    return "\n".join(lines)


def validate_statements(statements: Sequence[str]) -> None:
    """Reject statements that are not safe to re-run, before touching the database."""
    for index, statement in enumerate(statements):
        if not isinstance(statement, str) or not statement.strip():
            raise SchemaBootstrapError(index, ValueError("statement is empty"), statement)
        body = _strip_comments(statement)
        if _CREATE_TABLE.match(body) and not _CREATE_TABLE_GUARDED.match(body):
            raise SchemaBootstrapError(
                index, ValueError("CREATE TABLE without IF NOT EXISTS guard"), statement
            )
        if _INSERT.match(body) and not _INSERT_GUARDED.search(body):
            raise SchemaBootstrapError(
                index, ValueError("seed INSERT without an ignore-on-duplicate guard"), statement
            )


class SchemaBootstrapper:
    """Applies idempotent DDL/seed statement lists and tracks the schema version."""

    def __init__(
            self,
            executor: Optional[TransactionExecutor] = None,
            pool: Optional[ConnectionPoolManager] = None,
            max_retries: int = 3,
            base_backoff_ms: float = 100,
    ):
        self.executor = executor or TransactionExecutor(pool)
        self.max_retries = max_retries
        self.base_backoff_ms = base_backoff_ms

    async def _apply(self, conn: Any, statements: Sequence[str]) -> int:
        applied = 0
        for index, statement in enumerate(statements):
            try:
                await execute(conn, statement)
                applied += 1
            except Exception as e:
                if is_transient(e):
                    raise
                if is_already_exists(e):
                    logger.info(f"Statement #{index} skipped, already exists: {truncate_sql(statement, 60)}")
                    continue
                logger.error(f"Statement #{index} failed: {truncate_sql(statement)} - {e}")
                raise SchemaBootstrapError(index, e, statement) from e
        return applied

    async def _run(self, work, operation: str):
        try:
            return await self.executor.run(
                work,
                self.max_retries,
                self.base_backoff_ms,
                operation=operation,
            )
        except TransactionFailed as e:
            if isinstance(e.cause, SchemaBootstrapError):
                raise e.cause
            raise

    async def ensure_schema(self, statements: Sequence[str]) -> int:
        """
        Run every statement in one transaction; returns how many executed
        (statements skipped as already existing are not counted).

        Raises:
            SchemaBootstrapError: a statement failed for a reason other than "already exists"
        """
        statements = list(statements)
        validate_statements(statements)

        async def _bootstrap(conn):
            return await self._apply(conn, statements)

        applied = await self._run(_bootstrap, "ensure_schema")
        logger.info(f"Schema ensured: {applied}/{len(statements)} statements applied")
        return applied

    async def read_version(self) -> int:
        """Return the persisted schema version, creating the marker table if needed."""

        async def _read(conn):
            await execute(conn, SCHEMA_VERSION_TABLE_SQL)
            row = await fetch_one(conn, READ_VERSION_SQL)
            return int(row["current_version"] or 0) if row else 0

        return await self._run(_read, "read_schema_version")

    async def migrate_if_needed(
            self,
            current_version: Optional[int],
            target_version: int,
            statements: Sequence[str],
    ) -> bool:
        """
        Bring the schema to ``target_version``.

        ``current_version`` of None reads the persisted marker. The statements
        and the new marker are written by the same unit of work, so a crash
        between them is recovered by simply running again.

        Returns:
            True when statements were applied, False when already up to date.
        """
        if current_version is None:
            current_version = await self.read_version()
        if current_version >= target_version:
            logger.info(f"Schema is already up to date (version {current_version})")
            return False

        statements = list(statements)
        validate_statements(statements)
        logger.info(f"Updating schema from version {current_version} to {target_version}...")

        async def _migrate(conn):
            await execute(conn, SCHEMA_VERSION_TABLE_SQL)
            applied = await self._apply(conn, statements)
            await execute(conn, WRITE_VERSION_SQL, (target_version,))
            return applied

        applied = await self._run(_migrate, "migrate_schema")
        logger.info(f"Schema updated to version {target_version} ({applied} statements applied)")
        return True


async def ensure_schema(statements: Sequence[str], pool: Optional[ConnectionPoolManager] = None) -> int:
    return await SchemaBootstrapper(pool=pool).ensure_schema(statements)


async def migrate_if_needed(
        current_version: Optional[int],
        target_version: int,
        statements: Sequence[str],
        pool: Optional[ConnectionPoolManager] = None,
) -> bool:
    return await SchemaBootstrapper(pool=pool).migrate_if_needed(current_version, target_version, statements)


__all__ = [
    "SchemaBootstrapper",
    "ensure_schema",
    "migrate_if_needed",
    "validate_statements",
    "SCHEMA_VERSION_TABLE_SQL",
]

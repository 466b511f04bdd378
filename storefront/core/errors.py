"""
Error taxonomy and MySQL error classification for the storefront database layer.

Classification produces a standardized ErrorInfo so retry decisions never depend
on ad-hoc string matching at call sites:

    info = classify_mysql_error(exc)
    if info.retryable:          # deadlock / lock wait timeout only
        ...

Exceptions raised by this package all derive from DatabaseError and carry the
name of the operation that failed, so a log line is meaningful on its own.
"""

from enum import Enum
from typing import Any, Iterator, Optional

from pydantic import BaseModel, Field
from pymysql import err as mysql_err


class ErrorKind(str, Enum):
    """Standardized database error categories."""

    DB_DEADLOCK = "db_deadlock"           # 1213 Deadlock found
    DB_LOCK_TIMEOUT = "db_lock_timeout"   # 1205 Lock wait timeout exceeded
    DB_EXISTS = "db_exists"               # Table/database/key/user already exists
    DB_CONSTRAINT = "db_constraint"       # Foreign key violation
    DB_CONNECTION = "db_connection"       # Server gone away, lost connection
    DB_TIMEOUT = "db_timeout"             # Statement or acquisition timeout
    DB_SYNTAX = "db_syntax"               # Malformed SQL
    DB_ACCESS = "db_access"               # Permission denied
    UNKNOWN = "unknown"


# MySQL server (ER_*) and client (CR_*) error codes
_DEADLOCK_CODES = {1213}
_LOCK_TIMEOUT_CODES = {1205}
_EXISTS_CODES = {
    1007,  # ER_DB_CREATE_EXISTS
    1050,  # ER_TABLE_EXISTS_ERROR
    1060,  # ER_DUP_FIELDNAME
    1061,  # ER_DUP_KEYNAME
    1062,  # ER_DUP_ENTRY
    1396,  # ER_CANNOT_USER (CREATE USER for an existing account)
}
_CONSTRAINT_CODES = {1451, 1452, 1216, 1217}
_CONNECTION_CODES = {2003, 2006, 2013, 2055}
_TIMEOUT_CODES = {3024}  # ER_QUERY_TIMEOUT (max_execution_time)
_SYNTAX_CODES = {1064, 1149}
_ACCESS_CODES = {1044, 1045, 1142, 1227}


class ErrorInfo(BaseModel):
    """Standardized classification of a database error."""

    kind: ErrorKind = Field(
        default=ErrorKind.UNKNOWN,
        description="Error category"
    )
    retryable: bool = Field(
        default=False,
        description="Whether re-running the whole transaction may succeed"
    )
    code: str = Field(
        default="UNKNOWN",
        description="Driver error code (MYSQL_1213, PY_ValueError, ...)"
    )
    message: str = Field(
        default="Unknown error",
        description="Human-readable error message"
    )
    mysql_code: Optional[int] = Field(
        None, description="MySQL error number (e.g. 1213, 1205, 1050)"
    )
    exception_type: Optional[str] = Field(
        None, description="Python exception class name"
    )

    def to_dict(self) -> dict[str, Any]:
        d = {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "code": self.code,
            "message": self.message,
        }
        if self.mysql_code is not None:
            d["mysql_code"] = self.mysql_code
        if self.exception_type is not None:
            d["exception_type"] = self.exception_type
        return d


def iter_causes(error: BaseException) -> Iterator[BaseException]:
    """Yield the error followed by its explicit ``__cause__`` chain."""
    seen = set()
    current: Optional[BaseException] = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__


def mysql_error_code(error: BaseException) -> Optional[int]:
    """Return the MySQL error number carried by the error or its causes."""
    for exc in iter_causes(error):
        if isinstance(exc, mysql_err.MySQLError) and exc.args and isinstance(exc.args[0], int):
            return exc.args[0]
    return None


def _kind_for_code(code: int, error: BaseException) -> ErrorKind:
    if code in _DEADLOCK_CODES:
        return ErrorKind.DB_DEADLOCK
    if code in _LOCK_TIMEOUT_CODES:
        return ErrorKind.DB_LOCK_TIMEOUT
    if code in _EXISTS_CODES:
        return ErrorKind.DB_EXISTS
    if code in _CONSTRAINT_CODES:
        return ErrorKind.DB_CONSTRAINT
    if code in _CONNECTION_CODES or any(isinstance(e, mysql_err.InterfaceError) for e in iter_causes(error)):
        return ErrorKind.DB_CONNECTION
    if code in _TIMEOUT_CODES:
        return ErrorKind.DB_TIMEOUT
    if code in _SYNTAX_CODES:
        return ErrorKind.DB_SYNTAX
    if code in _ACCESS_CODES:
        return ErrorKind.DB_ACCESS
    return ErrorKind.UNKNOWN


def _kind_for_message(error: BaseException) -> ErrorKind:
    # Only the root cause's own message; wrapper messages embed SQL text
    root = list(iter_causes(error))[-1]
    if isinstance(root, DatabaseError):
        return ErrorKind.UNKNOWN
    text = str(root).lower()
    if "deadlock found" in text:
        return ErrorKind.DB_DEADLOCK
    if "lock wait timeout exceeded" in text:
        return ErrorKind.DB_LOCK_TIMEOUT
    if "already exists" in text:
        return ErrorKind.DB_EXISTS
    if "foreign key constraint" in text:
        return ErrorKind.DB_CONSTRAINT
    if "lost connection" in text or "gone away" in text:
        return ErrorKind.DB_CONNECTION
    if "access denied" in text:
        return ErrorKind.DB_ACCESS
    return ErrorKind.UNKNOWN


def classify_mysql_error(error: BaseException) -> ErrorInfo:
    """
    Classify a driver (or wrapped driver) error.

    A MySQL error number anywhere in the cause chain decides on its own;
    message matching applies only to errors that carry no number.
    """
    code = mysql_error_code(error)
    if code is not None:
        kind = _kind_for_code(code, error)
    elif any(isinstance(e, mysql_err.InterfaceError) for e in iter_causes(error)):
        kind = ErrorKind.DB_CONNECTION
    else:
        kind = _kind_for_message(error)
    return ErrorInfo(
        kind=kind,
        retryable=kind in (ErrorKind.DB_DEADLOCK, ErrorKind.DB_LOCK_TIMEOUT),
        code=f"MYSQL_{code}" if code else f"PY_{type(error).__name__}",
        message=str(error),
        mysql_code=code,
        exception_type=type(error).__name__,
    )


def is_transient(error: BaseException) -> bool:
    """True for deadlock and lock-wait-timeout errors, which are worth retrying."""
    if isinstance(error, (ConnectionLost, TransactionTimeout)):
        return False
    return classify_mysql_error(error).retryable


def is_already_exists(error: BaseException) -> bool:
    return classify_mysql_error(error).kind == ErrorKind.DB_EXISTS


class DatabaseError(Exception):
    """Base error for the database layer."""

    def __init__(self, message: str, operation: Optional[str] = None) -> None:
        self.operation = operation
        if operation:
            message = f"{operation}: {message}"
        super().__init__(message)

    @property
    def info(self) -> ErrorInfo:
        return classify_mysql_error(self)


class ConfigError(DatabaseError):
    """Invalid or missing pool configuration."""


class PoolInitError(DatabaseError):
    """The health check failed while initializing the pool."""


class AcquireTimeout(DatabaseError):
    """No connection became available within the acquisition budget."""

    def __init__(self, timeout_ms: float, operation: Optional[str] = "acquire") -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"no connection available within {timeout_ms:g}ms", operation)


class QueueLimitReached(AcquireTimeout):
    """Too many tasks are already waiting for a connection."""

    def __init__(self, queue_limit: int, operation: Optional[str] = "acquire") -> None:
        self.queue_limit = queue_limit
        self.timeout_ms = 0
        DatabaseError.__init__(self, f"queue limit of {queue_limit} waiting acquisitions reached", operation)


class PoolUnavailable(DatabaseError):
    """The pool is uninitialized, shutting down or closed."""


class ConnectionLost(DatabaseError):
    """A checked-out connection failed its liveness check."""


class TransactionTimeout(DatabaseError):
    """A unit of work ran past its time budget."""


class TransactionFailed(DatabaseError):
    """A unit of work failed for a non-transient reason; rollback already ran."""

    def __init__(self, cause: BaseException, operation: Optional[str] = None) -> None:
        self.cause = cause
        super().__init__(f"transaction failed: {cause}", operation)
        self.__cause__ = cause


class MaxRetriesExceeded(DatabaseError):
    """Transient-conflict retries were exhausted."""

    def __init__(self, last_error: BaseException, attempts: int, operation: Optional[str] = None) -> None:
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"transaction failed after {attempts} attempts: {last_error}", operation)
        self.__cause__ = last_error


class SchemaBootstrapError(DatabaseError):
    """A DDL/seed statement failed for a reason other than 'already exists'."""

    def __init__(
        self,
        index: int,
        cause: BaseException,
        statement: Optional[str] = None,
        operation: Optional[str] = "ensure_schema",
    ) -> None:
        self.index = index
        self.statement = statement
        self.cause = cause
        super().__init__(f"statement #{index} failed: {cause}", operation)
        self.__cause__ = cause


class QueryError(DatabaseError):
    """A statement failed; carries the (truncated) SQL for context."""

    def __init__(self, sql: str, cause: BaseException, operation: Optional[str] = "query") -> None:
        self.sql = sql
        self.cause = cause
        super().__init__(f"{truncate_sql(sql)} - {cause}", operation)
        self.__cause__ = cause


class QueryTimeout(DatabaseError):
    """A statement did not complete within its time budget."""

    def __init__(self, sql: str, timeout_ms: float, operation: Optional[str] = "query") -> None:
        self.sql = sql
        self.timeout_ms = timeout_ms
        super().__init__(f"timed out after {timeout_ms:g}ms: {truncate_sql(sql)}", operation)


class UnsafeIdentifierError(DatabaseError):
    """A table or column name is not on the allowlist."""


def truncate_sql(sql: str, limit: int = 100) -> str:
    sql = " ".join(sql.split())
    return f"{sql[:limit]}..." if len(sql) > limit else sql


__all__ = [
    "ErrorKind",
    "ErrorInfo",
    "classify_mysql_error",
    "mysql_error_code",
    "iter_causes",
    "is_transient",
    "is_already_exists",
    "truncate_sql",
    "DatabaseError",
    "ConfigError",
    "PoolInitError",
    "AcquireTimeout",
    "QueueLimitReached",
    "PoolUnavailable",
    "ConnectionLost",
    "TransactionTimeout",
    "TransactionFailed",
    "MaxRetriesExceeded",
    "SchemaBootstrapError",
    "QueryError",
    "QueryTimeout",
    "UnsafeIdentifierError",
]

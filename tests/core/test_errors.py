import pytest
from pymysql.err import IntegrityError, InterfaceError, OperationalError, ProgrammingError

from storefront.core.errors import (
    AcquireTimeout,
    ConnectionLost,
    ErrorKind,
    MaxRetriesExceeded,
    QueryError,
    QueueLimitReached,
    SchemaBootstrapError,
    TransactionFailed,
    TransactionTimeout,
    classify_mysql_error,
    is_already_exists,
    is_transient,
    truncate_sql,
)


@pytest.mark.parametrize("error, kind", [
    (OperationalError(1213, "Deadlock found when trying to get lock"), ErrorKind.DB_DEADLOCK),
    (OperationalError(1205, "Lock wait timeout exceeded"), ErrorKind.DB_LOCK_TIMEOUT),
    (OperationalError(1050, "Table 'users' already exists"), ErrorKind.DB_EXISTS),
    (IntegrityError(1062, "Duplicate entry 'x' for key 'PRIMARY'"), ErrorKind.DB_EXISTS),
    (IntegrityError(1452, "Cannot add or update a child row"), ErrorKind.DB_CONSTRAINT),
    (OperationalError(2006, "MySQL server has gone away"), ErrorKind.DB_CONNECTION),
    (InterfaceError(0, ""), ErrorKind.DB_CONNECTION),
    (ProgrammingError(1064, "You have an error in your SQL syntax"), ErrorKind.DB_SYNTAX),
    (OperationalError(1045, "Access denied for user"), ErrorKind.DB_ACCESS),
    (ValueError("bad input"), ErrorKind.UNKNOWN),
])
def test_classify_mysql_error(error, kind):
    info = classify_mysql_error(error)
    assert info.kind == kind
    assert info.retryable == (kind in (ErrorKind.DB_DEADLOCK, ErrorKind.DB_LOCK_TIMEOUT))


def test_classification_uses_message_when_no_code():
    assert is_transient(Exception("Deadlock found when trying to get lock; try restarting transaction"))
    assert is_transient(RuntimeError("Lock wait timeout exceeded; try restarting transaction"))
    assert is_already_exists(Exception("Table 'tags' already exists"))
    assert not is_transient(Exception("Unknown column 'foo' in 'field list'"))


def test_classification_follows_wrapped_causes():
    wrapped = QueryError("UPDATE products SET product_quantity = 0", OperationalError(1213, "Deadlock found"))

    info = wrapped.info
    assert info.mysql_code == 1213
    assert info.code == "MYSQL_1213"
    assert is_transient(wrapped)


def test_connection_and_timeout_errors_are_never_transient():
    assert not is_transient(ConnectionLost("Deadlock found while pinging"))
    assert not is_transient(TransactionTimeout("lock wait timeout exceeded"))


def test_error_info_to_dict():
    info = classify_mysql_error(OperationalError(1205, "Lock wait timeout exceeded"))
    assert info.to_dict() == {
        "kind": "db_lock_timeout",
        "retryable": True,
        "code": "MYSQL_1205",
        "message": "(1205, 'Lock wait timeout exceeded')",
        "mysql_code": 1205,
        "exception_type": "OperationalError",
    }


def test_error_messages_carry_operation():
    cause = ValueError("boom")

    failed = TransactionFailed(cause, "create_order")
    assert str(failed) == "create_order: transaction failed: boom"
    assert failed.__cause__ is cause

    exhausted = MaxRetriesExceeded(cause, 3, "reserve_stock")
    assert exhausted.attempts == 3
    assert "after 3 attempts" in str(exhausted)

    schema = SchemaBootstrapError(4, cause, "ALTER TABLE users ADD COLUMN x INT")
    assert schema.index == 4
    assert str(schema).startswith("ensure_schema: statement #4")


def test_queue_limit_is_an_acquire_timeout():
    error = QueueLimitReached(10)
    assert isinstance(error, AcquireTimeout)
    assert error.queue_limit == 10
    assert "10" in str(error)


def test_truncate_sql():
    sql = "SELECT *\n  FROM products\n WHERE " + " AND ".join(f"c{i} = %s" for i in range(50))
    short = truncate_sql(sql)
    assert short.startswith("SELECT * FROM products WHERE")
    assert short.endswith("...")
    assert len(short) == 103
    assert truncate_sql("SELECT 1") == "SELECT 1"


def test_mysql_code_wins_over_sql_text():
    syntax = QueryError(
        "UPDATE stats SET deadlock_count = deadlock_count + WHERE id = 1",
        ProgrammingError(1064, "You have an error in your SQL syntax"),
    )
    assert syntax.info.kind == ErrorKind.DB_SYNTAX
    assert not is_transient(syntax)

    ddl = QueryError(
        "CREATE TABLE IF NOT EXISTS notes (body TEXT DEFAULT 'already exists')",
        ProgrammingError(1064, "You have an error in your SQL syntax"),
    )
    assert not is_already_exists(ddl)


def test_message_matching_ignores_wrapper_text():
    wrapped = QueryError("SELECT 'Deadlock found' AS note", ValueError("bad parameter"))
    assert classify_mysql_error(wrapped).kind == ErrorKind.UNKNOWN
    assert not is_transient(wrapped)

    root_cause = QueryError("SELECT 1", RuntimeError("Lock wait timeout exceeded; try restarting transaction"))
    assert is_transient(root_cause)

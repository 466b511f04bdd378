import pytest
from pymysql.err import IntegrityError

from storefront.core.db import query
from storefront.core.db.pool import set_pool_manager
from storefront.core.db.query import QueryResult, execute, fetch_all, fetch_one
from storefront.core.errors import QueryError, QueryTimeout


@pytest.mark.asyncio
async def test_execute_reports_rowcount_and_last_insert_id(database):
    conn = database.connect()

    result = await execute(conn, "INSERT INTO brands (brand_name) VALUES (%s)", ("Acme",))

    assert isinstance(result, QueryResult)
    assert result.rowcount == 1
    assert result.lastrowid == 1


@pytest.mark.asyncio
async def test_fetch_helpers_return_dict_rows(database):
    conn = database.connect()
    database.rows["FROM brands WHERE"] = [{"brand_id": 7, "brand_name": "Acme"}]

    rows = await fetch_all(conn, "SELECT brand_id, brand_name FROM brands WHERE brand_name = %s", ("Acme",))
    row = await fetch_one(conn, "SELECT brand_id, brand_name FROM brands WHERE brand_name = %s", ("Acme",))
    missing = await fetch_one(conn, "SELECT brand_id FROM suppliers WHERE supplier_id = %s", (1,))

    assert rows == [{"brand_id": 7, "brand_name": "Acme"}]
    assert row == {"brand_id": 7, "brand_name": "Acme"}
    assert missing is None


@pytest.mark.asyncio
async def test_driver_errors_are_wrapped_with_sql(database):
    conn = database.connect()
    cause = IntegrityError(1062, "Duplicate entry 'acme@example.com' for key 'supplier_email'")
    database.failures["INSERT INTO suppliers"] = [cause]

    with pytest.raises(QueryError) as exc_info:
        await execute(conn, "INSERT INTO suppliers (supplier_email) VALUES (%s)", ("acme@example.com",))

    assert exc_info.value.cause is cause
    assert exc_info.value.__cause__ is cause
    assert "INSERT INTO suppliers" in str(exc_info.value)
    assert exc_info.value.info.mysql_code == 1062


@pytest.mark.asyncio
async def test_statement_timeout(database):
    conn = database.connect()
    database.delay = 0.5

    with pytest.raises(QueryTimeout) as exc_info:
        await fetch_all(conn, "SELECT * FROM products", timeout_ms=20)

    assert exc_info.value.timeout_ms == 20


@pytest.mark.asyncio
async def test_configure_changes_default_timeout(database):
    conn = database.connect()
    database.delay = 0.5
    query.configure(timeout_ms=20)

    with pytest.raises(QueryTimeout):
        await fetch_all(conn, "SELECT * FROM products")


@pytest.mark.asyncio
async def test_slow_query_is_logged(database, monkeypatch):
    conn = database.connect()
    database.delay = 0.02
    warnings = []
    monkeypatch.setattr(query.logger, "warning", lambda msg, *args, **kwargs: warnings.append(msg))

    await fetch_all(conn, "SELECT * FROM products", slow_query_ms=1)

    assert len(warnings) == 1
    assert warnings[0].startswith("Slow query")


@pytest.mark.asyncio
async def test_statement_without_connection_uses_default_pool(manager, pool_factory, database):
    set_pool_manager(manager)

    result = await execute(None, "INSERT INTO brands (brand_name) VALUES (%s)", ("Acme",))
    rows = await fetch_all(None, "SELECT * FROM brands")

    assert result.rowcount == 1
    assert [row["id"] for row in rows] == [result.lastrowid]
    native = pool_factory.created[0]
    assert native.in_use == 0
    assert manager.stats().acquired == manager.stats().released == 2


@pytest.mark.asyncio
async def test_failed_statement_without_connection_rolls_back(manager, pool_factory, database):
    set_pool_manager(manager)
    database.failures["INSERT INTO brands"] = [IntegrityError(1062, "Duplicate entry 'Acme' for key 'brand_name'")]

    with pytest.raises(QueryError):
        await execute(None, "INSERT INTO brands (brand_name) VALUES (%s)", ("Acme",))

    assert "brands" not in database.tables
    assert manager.stats().in_use == 0
    assert pool_factory.created[0].in_use == 0

import asyncio
import itertools
import os
import re

import pytest

from storefront.core import config as config_module
from storefront.core.config import DatabaseSettings
from storefront.core.db import pool as pool_module
from storefront.core.db import query as query_module
from storefront.core.db.pool import ConnectionPoolManager

_INSERT_INTO = re.compile(r"^\s*INSERT\s+(IGNORE\s+)?INTO\s+(\w+)", re.IGNORECASE)
_SELECT_ALL = re.compile(r"^\s*SELECT\s+\*\s+FROM\s+(\w+)", re.IGNORECASE)


class FakeDatabase:
    """In-memory stand-in for a MySQL server shared by every fake connection."""

    def __init__(self):
        self.failures = {}      # sql fragment -> exceptions raised by successive executions
        self.rows = {}          # sql fragment -> rows returned by SELECTs
        self.tables = {}        # table -> committed inserted rows
        self.executed = []      # every statement, in order
        self.committed = []     # statements of committed transactions
        self.delay = 0
        self.ping_error = None
        self.rollback_error = None
        self.connections = []
        self._ids = itertools.count(1)
        self._row_ids = itertools.count(1)

    def connect(self):
        conn = FakeConnection(self, next(self._ids))
        self.connections.append(conn)
        return conn

    def has_row(self, table, params):
        """Committed or in-flight row with the same values, as a unique key would see it."""
        rows = list(self.tables.get(table, []))
        for conn in self.connections:
            rows.extend(row for name, row in conn.pending if name == table)
        return any(row["params"] == params for row in rows)

    def next_row_id(self):
        return next(self._row_ids)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.rowcount = -1
        self.lastrowid = None
        self._rows = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def execute(self, sql, params=None):
        db = self.conn.db
        db.executed.append(sql)
        if db.delay:
            await asyncio.sleep(db.delay)
        for fragment, errors in db.failures.items():
            if fragment in sql and errors:
                raise errors.pop(0)

        self._rows = []
        self.lastrowid = None
        insert = _INSERT_INTO.match(sql)
        select = _SELECT_ALL.match(sql)
        if insert:
            table = insert.group(2)
            if insert.group(1) and db.has_row(table, params):
                self.lastrowid = 0
                self.rowcount = 0
                return
            self.lastrowid = db.next_row_id()
            self.conn.pending.append((table, {"id": self.lastrowid, "params": params}))
            self.rowcount = 1
            return
        if sql.lstrip().upper().startswith("SELECT"):
            configured = [rows for fragment, rows in db.rows.items() if fragment in sql]
            if configured:
                self._rows = list(configured[0])
            elif select:
                self._rows = list(db.tables.get(select.group(1), []))
            self.rowcount = len(self._rows)
            return
        self.rowcount = 0

    async def fetchall(self):
        return self._rows

    async def fetchone(self):
        return self._rows[0] if self._rows else None


class FakeConnection:
    def __init__(self, db, conn_id):
        self.db = db
        self.id = conn_id
        self.events = []
        self.pings = []
        self.pending = []
        self.closed = False

    def thread_id(self):
        return self.id

    async def ping(self, reconnect=True):
        self.pings.append(reconnect)
        if self.db.ping_error is not None:
            raise self.db.ping_error

    async def begin(self):
        self.events.append("begin")
        self.pending = []

    async def commit(self):
        self.events.append("commit")
        for table, row in self.pending:
            self.db.tables.setdefault(table, []).append(row)
        self.db.committed.extend(self.pending)
        self.pending = []

    async def rollback(self):
        self.events.append("rollback")
        self.pending = []
        if self.db.rollback_error is not None:
            raise self.db.rollback_error

    def close(self):
        self.closed = True

    def cursor(self, cursor_class=None):
        return FakeCursor(self)


class FakePool:
    """Mimics the parts of aiomysql.Pool the manager uses."""

    def __init__(self, database, maxsize=10, **kwargs):
        self.db = database
        self.maxsize = maxsize
        self.kwargs = kwargs
        self.acquire_error = None
        self.acquire_calls = 0
        self.release_calls = 0
        self.terminate_calls = 0
        self.closed = False
        self._free = []
        self._used = set()
        self._waiters = []

    @property
    def size(self):
        return len(self._free) + len(self._used)

    @property
    def freesize(self):
        return len(self._free)

    @property
    def in_use(self):
        return len(self._used)

    async def acquire(self):
        self.acquire_calls += 1
        if self.acquire_error is not None:
            raise self.acquire_error
        while not self._free and len(self._used) >= self.maxsize:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            try:
                await waiter
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
        conn = self._free.pop() if self._free else self.db.connect()
        self._used.add(conn)
        return conn

    def release(self, conn):
        assert conn in self._used, "connection released twice"
        self.release_calls += 1
        self._used.discard(conn)
        if not conn.closed and not self.closed:
            self._free.append(conn)
        for waiter in self._waiters:
            if not waiter.done():
                waiter.set_result(None)
                break
        fut = asyncio.get_running_loop().create_future()
        fut.set_result(None)
        return fut

    def terminate(self):
        self.terminate_calls += 1
        self.closed = True
        for conn in list(self._free) + list(self._used):
            conn.close()
        self._free.clear()
        self._used.clear()
        # like aiomysql, tasks already waiting for a slot are not woken

    async def wait_closed(self):
        return None


@pytest.fixture(autouse=True)
def _reset_module_state(monkeypatch):
    for name in list(os.environ):
        if name.startswith("DB_") or name.startswith("STOREFRONT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(query_module, "_defaults", dict(query_module._defaults))
    previous = pool_module.set_pool_manager(None)
    config_module.reset_database_settings()
    yield
    pool_module.set_pool_manager(previous)
    config_module.reset_database_settings()


@pytest.fixture
def database():
    return FakeDatabase()


@pytest.fixture
def pool_factory(database):
    created = []

    async def _factory(**kwargs):
        pool = FakePool(database, **kwargs)
        created.append(pool)
        return pool

    _factory.created = created
    return _factory


@pytest.fixture
def settings():
    return DatabaseSettings(
        host="localhost",
        user="storefront",
        password="",
        database="storefront",
        max_connections=2,
        acquire_timeout_ms=200,
        connect_timeout_ms=500,
    )


@pytest.fixture
def manager(settings, pool_factory):
    return ConnectionPoolManager(settings, pool_factory=pool_factory, name="test")

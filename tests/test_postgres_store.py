import os
import threading
import uuid
from decimal import Decimal

import psycopg2
import pytest

from cashbyking import database
from cashbyking.database import PostgresStore, init_database
from cashbyking.errors import ConflictError, StoreError, ValidationError


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.closed = False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise psycopg2.OperationalError("server closed the connection")

    def fetchone(self):
        sql = self.conn.executed[-1][0]
        return self.conn.responder(sql, self.conn.executed[-1][1])

    def fetchall(self):
        return []

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, responder=None, fail_on=None):
        self.responder = responder or (lambda sql, params: None)
        self.fail_on = fail_on
        self.executed = []
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True

    def statements(self):
        return [sql for sql, _ in self.executed]


@pytest.fixture
def connect(monkeypatch):
    """Route store connections to fakes; returns the list of opened fakes."""
    opened = []
    options = {}

    def fake_connect(dsn, **kwargs):
        conn = FakeConnection(**options)
        opened.append(conn)
        return conn

    def configure(**kwargs):
        options.update(kwargs)
        return opened

    monkeypatch.setattr(database.psycopg2, "connect", fake_connect)
    monkeypatch.setattr(database, "register_default_jsonb", lambda conn, loads: None)
    return configure


def test_set_upserts_inside_one_transaction(connect):
    opened = connect()
    store = PostgresStore("postgresql://example")

    store.set("USERS/u1/financialInfo/balance", Decimal("12.50"))

    [conn] = opened
    select, upsert = conn.statements()
    assert select.startswith("SELECT value FROM documents")
    assert select.endswith("FOR UPDATE")
    assert "ON CONFLICT (collection, key) DO UPDATE" in upsert
    param = conn.executed[1][1][2]
    assert param.dumps(param.adapted) == '{"financialInfo": {"balance": 12.5}}'
    assert conn.committed and conn.closed
    assert not conn.rolled_back


def test_get_does_not_lock(connect):
    opened = connect(responder=lambda sql, params: {"value": {"personalInfo": {"name": "Asha"}}})
    store = PostgresStore("postgresql://example")

    assert store.get("USERS/u1/personalInfo/name") == "Asha"
    [conn] = opened
    assert "FOR UPDATE" not in conn.statements()[0]
    assert conn.executed[0][1] == ("USERS", "u1")


def test_delete_issues_delete(connect):
    opened = connect(responder=lambda sql, params: {"value": {"n": 1}})
    PostgresStore("postgresql://example").delete("USERS/u1")
    assert opened[0].statements()[-1].startswith("DELETE FROM documents")


def test_query_failure_rolls_back_and_closes(connect):
    opened = connect(fail_on="INSERT")
    store = PostgresStore("postgresql://example")

    with pytest.raises(StoreError, match="Query failed"):
        store.set("TASKS/t1", {"title": "x"})

    [conn] = opened
    assert conn.rolled_back and conn.closed
    assert not conn.committed


def test_failed_transaction_rolls_back(connect):
    opened = connect(responder=lambda sql, params: {"value": {"n": 1}})
    store = PostgresStore("postgresql://example")

    def fail(current):
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        store.transaction("USERS/u1", fail)
    assert opened[0].rolled_back
    assert all(not sql.startswith("INSERT") for sql in opened[0].statements())


def test_nested_scopes_share_one_connection(connect):
    opened = connect()
    store = PostgresStore("postgresql://example")

    with store.atomic():
        store.set("USERS/u1", {"n": 1})
        store.set("TASKS/t1", {"n": 2})

    assert len(opened) == 1
    assert opened[0].committed


def test_create_conflict_inserts_nothing(connect):
    opened = connect()
    store = PostgresStore("postgresql://example")

    with pytest.raises(ConflictError):
        store.create("USERS/u1", {"personalInfo": {"name": "Asha"}})

    [conn] = opened
    assert "ON CONFLICT (collection, key) DO NOTHING RETURNING key" in conn.statements()[0]
    assert conn.rolled_back


def test_create_new_record(connect):
    opened = connect(responder=lambda sql, params: {"key": params[1]})
    PostgresStore("postgresql://example").create("USERS/u1", {"n": 1})
    assert opened[0].committed


def test_lock_orders_records(connect):
    opened = connect()
    store = PostgresStore("postgresql://example")

    store.lock("USERS/bala", "USERS/asha/personalInfo", "USERS/bala")

    params = [params for _, params in opened[0].executed]
    assert params == [("USERS", "asha"), ("USERS", "bala")]
    assert all(sql.endswith("FOR UPDATE") for sql in opened[0].statements())


def test_connection_failure(monkeypatch):
    def refuse(dsn, **kwargs):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(database.psycopg2, "connect", refuse)
    with pytest.raises(StoreError, match="connection failed"):
        PostgresStore("postgresql://example").get("USERS/u1")


def test_json_numbers_load_as_decimal():
    assert database._loads('{"balance": 1.10}') == {"balance": Decimal("1.10")}


def test_init_database_runs_schema(connect):
    opened = connect()
    init_database("postgresql://example")

    [conn] = opened
    assert "CREATE TABLE IF NOT EXISTS documents" in conn.statements()[0]
    assert conn.committed and conn.closed


def test_init_database_needs_dsn(monkeypatch):
    monkeypatch.setattr(database.config, "DATABASE_URL", None)
    with pytest.raises(ValueError):
        init_database()


requires_database = pytest.mark.skipif(
    not os.getenv("DATABASE_URL"), reason="DATABASE_URL not set"
)


@pytest.fixture
def pg_store():
    dsn = os.environ["DATABASE_URL"]
    init_database(dsn)
    collection = f"TEST_{uuid.uuid4().hex[:8]}"
    yield PostgresStore(dsn), collection

    conn = psycopg2.connect(dsn)
    cur = conn.cursor()
    cur.execute("DELETE FROM documents WHERE collection = %s", (collection,))
    conn.commit()
    cur.close()
    conn.close()


@requires_database
def test_live_set_get_and_rollback(pg_store):
    store, collection = pg_store
    store.set(f"{collection}/u1", {"financialInfo": {"balance": Decimal("10.05")}})
    assert store.get(f"{collection}/u1/financialInfo/balance") == Decimal("10.05")

    with pytest.raises(ValidationError):
        with store.atomic():
            store.increment(f"{collection}/u1/financialInfo/balance", Decimal("5"))
            store.set(f"{collection}/u2", {"n": 1})
            raise ValidationError("boom")

    assert store.get(f"{collection}/u1/financialInfo/balance") == Decimal("10.05")
    assert store.get(f"{collection}/u2") is None
    assert list(store.get(collection)) == ["u1"]


@requires_database
def test_live_concurrent_creates(pg_store):
    store, collection = pg_store
    results = []

    def create(n):
        try:
            store.create(f"{collection}/u1", {"n": n})
            results.append(n)
        except ConflictError:
            pass

    threads = [threading.Thread(target=create, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 1
    assert store.get(f"{collection}/u1/n") == results[0]


@requires_database
def test_live_concurrent_increments(pg_store):
    store, collection = pg_store
    store.set(f"{collection}/u1", {"count": 0})

    threads = [
        threading.Thread(target=store.increment, args=(f"{collection}/u1/count", 1))
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert store.get(f"{collection}/u1/count") == 8

import copy
import json
import logging
import os
import threading
import time
import uuid
from contextlib import contextmanager
from decimal import Decimal
from enum import Enum
from functools import lru_cache, partial

import psycopg2
from psycopg2.extras import Json, RealDictCursor, register_default_jsonb

from . import config
from .errors import ConflictError, StoreError

logger = logging.getLogger(__name__)

USERS = "USERS"
TASKS = "TASKS"
PENDING_TASKS = "PENDING_TASKS"
WITHDRAWALS = "WITHDRAWALS"
TRANSACTIONS = "TRANSACTIONS"

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def split_path(path):
    """Split ``COLLECTION/key/a/b`` into ``("COLLECTION", "key", ["a", "b"])``."""
    parts = [part for part in path.strip("/").split("/") if part]
    if not parts:
        raise StoreError("Empty store path")
    key = parts[1] if len(parts) > 1 else None
    return parts[0], key, parts[2:]


def _dig(value, keys):
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _put(record, keys, value):
    if not keys:
        return value
    record = record if isinstance(record, dict) else {}
    head, rest = keys[0], keys[1:]
    child = _put(record.get(head), rest, value)
    if child is None:
        record.pop(head, None)
    else:
        record[head] = child
    return record


def _overlaps(first, second):
    a = first.strip("/").split("/")
    b = second.strip("/").split("/")
    size = min(len(a), len(b))
    return a[:size] == b[:size]


class DocumentStore:
    """Key-path JSON store.

    Subclasses only deal with whole top-level records (``COLLECTION/key``);
    everything below the record key is handled here. ``atomic()`` opens an
    all-or-nothing scope; every read-for-write inside it is locked until the
    scope ends, and subscribers are only notified after a successful commit.
    """

    def __init__(self):
        self._local = threading.local()
        self._subscriptions = {}
        self._subscription_lock = threading.Lock()
        self._clock_lock = threading.Lock()
        self._last_timestamp = 0

    # Record-level primitives

    def _begin(self):
        raise NotImplementedError

    def _commit(self):
        raise NotImplementedError

    def _rollback(self):
        raise NotImplementedError

    def _read_record(self, collection, key, for_update=False):
        raise NotImplementedError

    def _write_record(self, collection, key, value):
        raise NotImplementedError

    def _insert_record(self, collection, key, value):
        """Write a new record; return False if one already exists."""
        raise NotImplementedError

    def _read_collection(self, collection):
        raise NotImplementedError

    # Public contract

    @contextmanager
    def atomic(self):
        state = self._local
        if getattr(state, "depth", 0):
            state.depth += 1
            try:
                yield self
            finally:
                state.depth -= 1
            return

        self._begin()
        state.depth = 1
        state.changed = []
        try:
            yield self
            self._commit()
        except BaseException:
            self._rollback()
            raise
        finally:
            state.depth = 0
        changed, state.changed = state.changed, []
        self._dispatch(changed)

    def get(self, path):
        collection, key, keys = split_path(path)
        with self.atomic():
            if key is None:
                return copy.deepcopy(self._read_collection(collection)) or None
            return copy.deepcopy(_dig(self._read_record(collection, key), keys))

    def set(self, path, value):
        self._mutate(path, lambda current: value)

    def update(self, path, values):
        def merge(current):
            merged = dict(current) if isinstance(current, dict) else {}
            merged.update(values)
            return merged

        return self._mutate(path, merge)

    def delete(self, path):
        self._mutate(path, lambda current: None)

    def create(self, path, value):
        """Write a new top-level record, or raise ConflictError if it exists."""
        collection, key, keys = split_path(path)
        if key is None or keys:
            raise StoreError(f"Only top-level records can be created, not {path}")
        with self.atomic():
            if not self._insert_record(collection, key, copy.deepcopy(value)):
                raise ConflictError(f"{path} already exists")
            self._local.changed.append(path)

    def lock(self, *paths):
        """Lock the records under ``paths`` until the enclosing ``atomic()`` ends.

        Records are locked in (collection, key) order, so scopes that lock
        the same records up front cannot deadlock on each other.
        """
        records = sorted({split_path(path)[:2] for path in paths if path})
        with self.atomic():
            for collection, key in records:
                if key is not None:
                    self._read_record(collection, key, for_update=True)

    def push(self, collection, value):
        key = self.new_key()
        self.set(f"{collection}/{key}", value)
        return key

    def transaction(self, path, fn):
        """Atomically replace the value at ``path`` with ``fn(current)``.

        An exception raised by ``fn`` aborts the transaction (and the
        enclosing ``atomic()`` scope) and propagates to the caller.
        """
        return self._mutate(path, fn)

    def increment(self, path, delta, minimum=None):
        def add(current):
            if isinstance(current, float):
                current = Decimal(str(current))
            value = (current or 0) + delta
            if minimum is not None and value < minimum:
                value = minimum
            return value

        return self._mutate(path, add)

    def subscribe(self, path, callback):
        handle = uuid.uuid4().hex
        with self._subscription_lock:
            self._subscriptions[handle] = (path, callback)
        return handle

    def unsubscribe(self, handle):
        with self._subscription_lock:
            self._subscriptions.pop(handle, None)

    def server_timestamp(self):
        with self._clock_lock:
            now = int(time.time() * 1000)
            self._last_timestamp = max(now, self._last_timestamp + 1)
            return self._last_timestamp

    def new_key(self):
        return f"{int(time.time() * 1000):x}{uuid.uuid4().hex[:10]}"

    # Internals

    def _mutate(self, path, fn):
        collection, key, keys = split_path(path)
        if key is None:
            raise StoreError(f"Cannot write to collection root {collection}")
        with self.atomic():
            record = self._read_record(collection, key, for_update=True)
            new_value = fn(copy.deepcopy(_dig(record, keys)))
            record = _put(copy.deepcopy(record), keys, copy.deepcopy(new_value))
            self._write_record(collection, key, record)
            self._local.changed.append(path)
        return new_value

    def _dispatch(self, changed):
        if not changed:
            return
        with self._subscription_lock:
            subscriptions = list(self._subscriptions.items())
        for handle, (path, callback) in subscriptions:
            if not any(_overlaps(path, changed_path) for changed_path in changed):
                continue
            try:
                callback(self.get(path))
            except Exception:
                logger.exception(f"Subscriber {handle} failed for {path}")


class MemoryStore(DocumentStore):
    """Single-process store; ``atomic()`` scopes are serialized by one lock."""

    def __init__(self, data=None):
        super().__init__()
        self._data = copy.deepcopy(data) if data else {}
        self._lock = threading.RLock()
        self._snapshot = None

    def _begin(self):
        self._lock.acquire()
        self._snapshot = None

    def _commit(self):
        self._snapshot = None
        self._lock.release()

    def _rollback(self):
        if self._snapshot is not None:
            self._data = self._snapshot
        self._snapshot = None
        self._lock.release()

    def _read_record(self, collection, key, for_update=False):
        return self._data.get(collection, {}).get(key)

    def _write_record(self, collection, key, value):
        if self._snapshot is None:
            self._snapshot = copy.deepcopy(self._data)
        records = self._data.setdefault(collection, {})
        if value is None:
            records.pop(key, None)
        else:
            records[key] = value

    def _insert_record(self, collection, key, value):
        if key in self._data.get(collection, {}):
            return False
        self._write_record(collection, key, value)
        return True

    def _read_collection(self, collection):
        return dict(self._data.get(collection, {}))


def _json_default(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


_dumps = partial(json.dumps, default=_json_default)
_loads = partial(json.loads, parse_float=Decimal)


class PostgresStore(DocumentStore):
    """Records stored as JSONB rows; one database transaction per ``atomic()``."""

    def __init__(self, dsn):
        super().__init__()
        self.dsn = dsn

    def _begin(self):
        try:
            conn = psycopg2.connect(self.dsn, cursor_factory=RealDictCursor)
        except psycopg2.Error as e:
            raise StoreError(f"Database connection failed: {e}") from e
        register_default_jsonb(conn, loads=_loads)
        self._local.conn = conn

    def _commit(self):
        conn = self._local.conn
        try:
            conn.commit()
        except psycopg2.Error as e:
            raise StoreError(f"Commit failed: {e}") from e
        conn.close()
        self._local.conn = None

    def _rollback(self):
        conn = self._local.conn
        if conn is None:
            return
        try:
            conn.rollback()
        except psycopg2.Error as e:
            logger.warning(f"Rollback failed: {e}")
        finally:
            conn.close()
            self._local.conn = None

    def _execute(self, sql, params, fetch=None):
        cur = self._local.conn.cursor()
        try:
            cur.execute(sql, params)
            if fetch == "one":
                return cur.fetchone()
            if fetch == "all":
                return cur.fetchall()
        except psycopg2.Error as e:
            raise StoreError(f"Query failed: {e}") from e
        finally:
            cur.close()

    def _read_record(self, collection, key, for_update=False):
        sql = "SELECT value FROM documents WHERE collection = %s AND key = %s"
        if for_update:
            sql += " FOR UPDATE"
        row = self._execute(sql, (collection, key), fetch="one")
        return row["value"] if row else None

    def _write_record(self, collection, key, value):
        if value is None:
            self._execute(
                "DELETE FROM documents WHERE collection = %s AND key = %s",
                (collection, key),
            )
            return
        self._execute("""
            INSERT INTO documents (collection, key, value)
            VALUES (%s, %s, %s)
            ON CONFLICT (collection, key)
            DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
        """, (collection, key, Json(value, dumps=_dumps)))

    def _insert_record(self, collection, key, value):
        # A concurrent insert of the same key blocks here until the other
        # transaction ends, then inserts nothing.
        row = self._execute("""
            INSERT INTO documents (collection, key, value)
            VALUES (%s, %s, %s)
            ON CONFLICT (collection, key) DO NOTHING
            RETURNING key
        """, (collection, key, Json(value, dumps=_dumps)), fetch="one")
        return row is not None

    def _read_collection(self, collection):
        rows = self._execute("""
            SELECT key, value FROM documents
            WHERE collection = %s
            ORDER BY created_at, key
        """, (collection,), fetch="all")
        return {row["key"]: row["value"] for row in rows}


def init_database(dsn=None):
    dsn = dsn or config.DATABASE_URL
    if not dsn:
        raise ValueError("DATABASE_URL environment variable not set")

    conn = psycopg2.connect(dsn)
    cur = conn.cursor()

    with open(SCHEMA_PATH, "r") as f:
        cur.execute(f.read())

    conn.commit()
    cur.close()
    conn.close()
    logger.info("Database initialized successfully")


@lru_cache(maxsize=None)
def get_store():
    if config.STORE_BACKEND == "postgres":
        if not config.DATABASE_URL:
            raise ValueError("DATABASE_URL environment variable not set")
        return PostgresStore(config.DATABASE_URL)
    logger.warning("Using in-memory store, data is lost on restart")
    return MemoryStore()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_database()

"""
SQLite document store for DocBridge.

Documents are stored as JSON text, one row per (collection, key). Filters
and ordering are translated to json_type()/json_extract() expressions, so
no document is filtered client-side.

Transactions are optimistic:
    - begin() opens a deferred read transaction on a dedicated connection;
      in WAL mode that pins a snapshot for every later read
    - writes are buffered in memory
    - commit() re-opens the connection with BEGIN IMMEDIATE, compares the
      version of every document read or written against the snapshot, and
      applies the buffer only if none changed

Invariants:
    - The database must be a file (WAL snapshots need a shared file)
    - versions rows are never deleted, so delete-then-recreate is detected
    - Without ordering, documents come back in insertion order (rowid)
    - Every write bumps the document's version in the same transaction
    - NaN and Infinity are rejected with StoreError at write time
    - sqlite3 errors surface as StoreError

How to change safely:
    - Schema migrations must be backward compatible
    - Keep matching semantics aligned with the in-memory store

Table schema:
    documents:
        - collection TEXT
        - key TEXT
        - data TEXT (JSON, sorted keys)
        - UNIQUE (collection, key)

    versions:
        - collection TEXT
        - key TEXT
        - version INTEGER
        - PRIMARY KEY (collection, key)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .base import (
    DELETE_FIELD,
    FieldFilter,
    FilterOp,
    RawDocument,
    SortDirection,
    SortKey,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
    apply_update,
)

logger = logging.getLogger(__name__)

DocKey = tuple[str, str]

_RANGE_OPS = {
    FilterOp.LT: "<",
    FilterOp.LE: "<=",
    FilterOp.GT: ">",
    FilterOp.GE: ">=",
}


_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _dumps(data: Any) -> str:
    """Serialize a document; SQLite JSON has no NaN or Infinity."""
    try:
        return json.dumps(
            data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        )
    except ValueError as e:
        raise StoreError(f"Document cannot be stored as JSON: {e}") from e


def _loads(text: str) -> dict[str, Any]:
    try:
        return json.loads(text)
    except ValueError as e:
        raise StoreError(f"Stored document is not valid JSON: {e}") from e


def _check_fields(fields: dict[str, Any]) -> None:
    _dumps({name: value for name, value in fields.items() if value is not DELETE_FIELD})


def _param(value: Any) -> Any:
    """Bind a comparison value; integers beyond 64 bits compare as reals."""
    if isinstance(value, int) and not isinstance(value, bool):
        if not _INT64_MIN <= value <= _INT64_MAX:
            return float(value)
    return value


def _json_path(field: str) -> str:
    """Render a dotted field path as a quoted SQL JSON path literal."""
    parts = field.split(".")
    if any(not part or '"' in part for part in parts):
        raise StoreError(f"Unsupported field path: {field!r}")
    path = "$" + "".join(f'."{part}"' for part in parts)
    return "'" + path.replace("'", "''") + "'"


def _type_class(value: Any) -> tuple[str, ...]:
    if value is None:
        return ("null",)
    if isinstance(value, bool):
        return ("true", "false")
    if isinstance(value, (int, float)):
        return ("integer", "real")
    if isinstance(value, str):
        return ("text",)
    if isinstance(value, list):
        return ("array",)
    return ("object",)


def _in_types(type_expr: str, types: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{t}'" for t in types)
    return f"{type_expr} IN ({quoted})"


def _eq(type_expr: str, value_expr: str, value: Any) -> tuple[str, list[Any]]:
    """Type-strict equality of a JSON value against a Python value."""
    if value is None:
        return f"{type_expr} = 'null'", []
    if isinstance(value, bool):
        return f"{type_expr} = ?", ["true" if value else "false"]
    if isinstance(value, (list, dict)):
        return (
            f"({_in_types(type_expr, _type_class(value))} AND {value_expr} = ?)",
            [_dumps(value)],
        )
    return (
        f"({_in_types(type_expr, _type_class(value))} AND {value_expr} = ?)",
        [_param(value)],
    )


def _any_eq(type_expr: str, value_expr: str, values: Any) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    for value in values:
        sql, args = _eq(type_expr, value_expr, value)
        clauses.append(sql)
        params.extend(args)
    if not clauses:
        return "0", []
    return "(" + " OR ".join(clauses) + ")", params


def build_filter(flt: FieldFilter) -> tuple[str, list[Any]]:
    """Translate one filter into a WHERE clause fragment."""
    path = _json_path(flt.field)
    type_expr = f"json_type(data, {path})"
    value_expr = f"json_extract(data, {path})"
    present = f"{type_expr} IS NOT NULL"
    op = flt.op

    if op == FilterOp.EQ:
        return _eq(type_expr, value_expr, flt.value)
    if op == FilterOp.NE:
        sql, params = _eq(type_expr, value_expr, flt.value)
        return f"({present} AND NOT {sql})", params
    if op == FilterOp.IN:
        return _any_eq(type_expr, value_expr, flt.value)
    if op == FilterOp.NOT_IN:
        sql, params = _any_eq(type_expr, value_expr, flt.value)
        return f"({present} AND NOT {sql})", params
    if op in (FilterOp.ARRAY_CONTAINS, FilterOp.ARRAY_CONTAINS_ANY):
        targets = [flt.value] if op == FilterOp.ARRAY_CONTAINS else flt.value
        sql, params = _any_eq("je.type", "je.value", targets)
        return (
            f"({type_expr} = 'array' AND EXISTS "
            f"(SELECT 1 FROM json_each(data, {path}) AS je WHERE {sql}))",
            params,
        )
    if op in _RANGE_OPS:
        types = _type_class(flt.value)
        if types[0] in ("null", "array", "object"):
            return "0", []
        param = int(flt.value) if isinstance(flt.value, bool) else _param(flt.value)
        return (
            f"({_in_types(type_expr, types)} AND {value_expr} {_RANGE_OPS[op]} ?)",
            [param],
        )
    raise StoreError(f"Unsupported filter operator: {op}")


def build_order(sort_key: SortKey) -> tuple[str, str]:
    """Return (presence clause, ORDER BY fragment) for one sort key."""
    path = _json_path(sort_key.field)
    type_expr = f"json_type(data, {path})"
    direction = "DESC" if sort_key.direction == SortDirection.DESC else "ASC"
    rank = (
        f"CASE {type_expr} WHEN 'null' THEN 0 WHEN 'true' THEN 1 WHEN 'false' THEN 1 "
        f"WHEN 'integer' THEN 2 WHEN 'real' THEN 2 WHEN 'text' THEN 3 "
        f"WHEN 'array' THEN 4 ELSE 5 END"
    )
    return (
        f"{type_expr} IS NOT NULL",
        f"{rank} {direction}, json_extract(data, {path}) {direction}",
    )


def build_query(
    collection: str,
    filters: tuple[FieldFilter, ...],
    order: tuple[SortKey, ...],
    limit: int | None,
) -> tuple[str, list[Any]]:
    where = ["collection = ?"]
    params: list[Any] = [collection]
    for flt in filters:
        sql, args = build_filter(flt)
        where.append(sql)
        params.extend(args)

    order_by = []
    for sort_key in order:
        presence, fragment = build_order(sort_key)
        where.append(presence)
        order_by.append(fragment)
    order_by.append("rowid ASC")

    sql = f"SELECT key, data FROM documents WHERE {' AND '.join(where)} ORDER BY {', '.join(order_by)}"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    return sql, params


@dataclass
class _Op:
    kind: str
    collection: str
    key: str
    data: dict[str, Any] | None = None


class SqliteTransaction:
    """Optimistic snapshot transaction on a dedicated connection."""

    def __init__(self, store: SqliteDocumentStore, conn: sqlite3.Connection) -> None:
        self._store = store
        self._conn = conn
        self._reads: set[DocKey] = set()
        self._ops: list[_Op] = []
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def _check_open(self) -> None:
        if not self._open:
            raise StoreError("Transaction is closed")

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        self._check_open()
        self._reads.add((collection, key))
        return _read(self._conn, collection, key)

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        self._check_open()
        results = _query(self._conn, collection, filters, order, limit)
        self._reads.update((collection, doc.key) for doc in results)
        return results

    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._check_open()
        self._ops.append(_Op("write", collection, key, json.loads(_dumps(data))))

    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        self._check_open()
        _check_fields(fields)
        self._ops.append(_Op("update", collection, key, dict(fields)))

    async def remove(self, collection: str, key: str) -> None:
        self._check_open()
        self._ops.append(_Op("remove", collection, key))

    async def commit(self) -> None:
        self._check_open()
        self._open = False
        conn = self._conn
        touched = self._reads | {(op.collection, op.key) for op in self._ops}
        try:
            base = _versions(conn, touched)
            conn.execute("ROLLBACK")

            conn.execute("BEGIN IMMEDIATE")
            try:
                current = _versions(conn, touched)
                changed = [doc_key for doc_key in touched if current[doc_key] != base[doc_key]]
                if changed:
                    raise StoreConflictError(
                        f"Document {changed[0][0]}/{changed[0][1]} changed since transaction began"
                    )
                for op in self._ops:
                    _apply(conn, op)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as e:
            raise StoreError(f"SQLite commit failed: {e}") from e
        finally:
            conn.close()

        logger.debug("SQLite transaction committed", extra={"ops": len(self._ops)})

    async def rollback(self) -> None:
        if not self._open:
            return
        self._open = False
        self._ops.clear()
        try:
            self._conn.execute("ROLLBACK")
        finally:
            self._conn.close()


def _read(conn: sqlite3.Connection, collection: str, key: str) -> dict[str, Any] | None:
    try:
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND key = ?",
            (collection, key),
        ).fetchone()
    except sqlite3.Error as e:
        raise StoreError(f"SQLite read failed: {e}") from e
    return _loads(row["data"]) if row else None


def _query(
    conn: sqlite3.Connection,
    collection: str,
    filters: tuple[FieldFilter, ...],
    order: tuple[SortKey, ...],
    limit: int | None,
) -> list[RawDocument]:
    sql, params = build_query(collection, filters, order, limit)
    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"SQLite query on {collection} failed: {e}") from e
    return [RawDocument(key=row["key"], data=_loads(row["data"])) for row in rows]


def _versions(conn: sqlite3.Connection, keys: set[DocKey]) -> dict[DocKey, int]:
    result: dict[DocKey, int] = {}
    for collection, key in keys:
        row = conn.execute(
            "SELECT version FROM versions WHERE collection = ? AND key = ?",
            (collection, key),
        ).fetchone()
        result[(collection, key)] = row["version"] if row else 0
    return result


def _apply(conn: sqlite3.Connection, op: _Op) -> None:
    if op.kind == "write":
        conn.execute(
            """
            INSERT INTO documents (collection, key, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, key) DO UPDATE SET data = excluded.data
            """,
            (op.collection, op.key, _dumps(op.data)),
        )
    elif op.kind == "update":
        current = _read(conn, op.collection, op.key)
        if current is None:
            raise StoreError(f"Cannot update missing document {op.collection}/{op.key}")
        conn.execute(
            "UPDATE documents SET data = ? WHERE collection = ? AND key = ?",
            (_dumps(apply_update(current, op.data or {})), op.collection, op.key),
        )
    else:
        conn.execute(
            "DELETE FROM documents WHERE collection = ? AND key = ?",
            (op.collection, op.key),
        )
    conn.execute(
        """
        INSERT INTO versions (collection, key, version) VALUES (?, ?, 1)
        ON CONFLICT (collection, key) DO UPDATE SET version = version + 1
        """,
        (op.collection, op.key),
    )


class SqliteDocumentStore:
    """SQLite-backed implementation of DocumentStore.

    Thread safety:
        Each operation opens its own connection; transactions hold a
        dedicated connection until commit or rollback. SQLite handles
        concurrent access via WAL mode.

    Example:
        >>> store = SqliteDocumentStore("/var/lib/docbridge/app.db")
        >>> await store.connect()
        >>> key = await store.new_key("users")
        >>> await store.write("users", key, {"name": "Alice"})
    """

    read_your_writes = False

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        if path == ":memory:":
            raise ValueError("SqliteDocumentStore needs a database file, not ':memory:'")
        self.path = Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        if not self._connected:
            raise StoreConnectionError("Not connected")
        conn = self._open()
        try:
            yield conn
        finally:
            conn.close()

    async def connect(self) -> None:
        """Create the database file and schema if needed."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._open()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    data TEXT NOT NULL,
                    UNIQUE (collection, key)
                );

                CREATE TABLE IF NOT EXISTS versions (
                    collection TEXT NOT NULL,
                    key TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    PRIMARY KEY (collection, key)
                );

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
                """
            )
        finally:
            conn.close()
        self._connected = True
        logger.info("SQLite document store ready", extra={"path": str(self.path)})

    async def close(self) -> None:
        self._connected = False

    async def new_key(self, collection: str) -> str:
        return uuid.uuid4().hex

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        with self._get_connection() as conn:
            return _read(conn, collection, key)

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        with self._get_connection() as conn:
            return _query(conn, collection, filters, order, limit)

    async def _write_one(self, op: _Op) -> None:
        with self._get_connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    _apply(conn, op)
                    conn.execute("COMMIT")
                except Exception:
                    conn.execute("ROLLBACK")
                    raise
            except sqlite3.Error as e:
                raise StoreError(f"SQLite write to {op.collection} failed: {e}") from e

    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        await self._write_one(_Op("write", collection, key, data))

    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        await self._write_one(_Op("update", collection, key, fields))

    async def remove(self, collection: str, key: str) -> None:
        await self._write_one(_Op("remove", collection, key))

    async def begin(self) -> SqliteTransaction:
        if not self._connected:
            raise StoreConnectionError("Not connected")
        conn = self._open()
        try:
            conn.execute("BEGIN")
            # The first read pins the snapshot
            conn.execute("SELECT count(*) FROM versions").fetchone()
        except sqlite3.Error as e:
            conn.close()
            raise StoreError(f"SQLite begin failed: {e}") from e
        return SqliteTransaction(self, conn)

    async def get_stats(self) -> dict[str, int]:
        """Document counts per collection."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT collection, count(*) AS n FROM documents GROUP BY collection"
            ).fetchall()
            return {row["collection"]: row["n"] for row in rows}

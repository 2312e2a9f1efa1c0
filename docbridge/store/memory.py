"""
In-memory document store for testing.

This module provides a simple in-memory store backend for:
- Unit tests
- Integration tests
- Local development without external dependencies

Invariants:
    - All data is lost on process exit
    - Stored dicts are never mutated in place, so a snapshot is a shallow
      copy of the collection maps
    - Every change bumps the per-document version; commit fails with
      StoreConflictError if a document the transaction read or wrote has
      changed since begin()
    - Without ordering, documents come back in insertion order

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep matching semantics aligned with the SQLite store
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from .base import (
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

_MISSING = object()

DocKey = tuple[str, str]


# =============================================================================
# Matching helpers
# =============================================================================


def get_path(data: dict[str, Any], path: str) -> Any:
    """Resolve a dotted field path, returning _MISSING when absent."""
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 1
    if isinstance(value, (int, float)):
        return 2
    if isinstance(value, str):
        return 3
    if isinstance(value, list):
        return 4
    return 5


def _sort_value(value: Any) -> tuple[int, Any]:
    rank = _rank(value)
    if rank in (4, 5):
        return rank, json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    if rank == 0:
        return rank, 0
    return rank, value


def _same(a: Any, b: Any) -> bool:
    return _rank(a) == _rank(b) and a == b


def matches(data: dict[str, Any], flt: FieldFilter) -> bool:
    """Evaluate one filter against a document body."""
    value = get_path(data, flt.field)
    if value is _MISSING:
        return False

    op = flt.op
    if op == FilterOp.EQ:
        return _same(value, flt.value)
    if op == FilterOp.NE:
        return not _same(value, flt.value)
    if op == FilterOp.IN:
        return any(_same(value, item) for item in flt.value)
    if op == FilterOp.NOT_IN:
        return not any(_same(value, item) for item in flt.value)
    if op == FilterOp.ARRAY_CONTAINS:
        return isinstance(value, list) and any(_same(item, flt.value) for item in value)
    if op == FilterOp.ARRAY_CONTAINS_ANY:
        return isinstance(value, list) and any(
            _same(item, target) for item in value for target in flt.value
        )

    # Range comparisons only match values of the same type
    if _rank(value) != _rank(flt.value) or _rank(value) in (0, 4, 5):
        return False
    if op == FilterOp.LT:
        return value < flt.value
    if op == FilterOp.LE:
        return value <= flt.value
    if op == FilterOp.GT:
        return value > flt.value
    if op == FilterOp.GE:
        return value >= flt.value
    raise StoreError(f"Unsupported filter operator: {op}")


def run_query(
    documents: Iterable[tuple[str, dict[str, Any]]],
    filters: tuple[FieldFilter, ...],
    order: tuple[SortKey, ...],
    limit: int | None,
) -> list[RawDocument]:
    """Filter, order and limit (key, body) pairs given in insertion order."""
    selected = [
        (key, data)
        for key, data in documents
        if all(matches(data, flt) for flt in filters)
        and all(get_path(data, s.field) is not _MISSING for s in order)
    ]
    # Successive stable sorts, least significant key first
    for sort_key in reversed(order):
        selected.sort(
            key=lambda item: _sort_value(get_path(item[1], sort_key.field)),
            reverse=sort_key.direction == SortDirection.DESC,
        )
    if limit is not None:
        selected = selected[:limit]
    return [RawDocument(key=key, data=copy.deepcopy(data)) for key, data in selected]


# =============================================================================
# Store
# =============================================================================


@dataclass
class _Op:
    kind: str
    collection: str
    key: str
    data: dict[str, Any] | None = None


class InMemoryTransaction:
    """Snapshot transaction over an InMemoryDocumentStore."""

    def __init__(
        self,
        store: InMemoryDocumentStore,
        snapshot: dict[str, dict[str, dict[str, Any]]],
        versions: dict[DocKey, int],
    ) -> None:
        self._store = store
        self._snapshot = snapshot
        self._base_versions = versions
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
        data = self._snapshot.get(collection, {}).get(key)
        return copy.deepcopy(data) if data is not None else None

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        self._check_open()
        results = run_query(self._snapshot.get(collection, {}).items(), filters, order, limit)
        self._reads.update((collection, doc.key) for doc in results)
        return results

    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        self._check_open()
        self._ops.append(_Op("write", collection, key, copy.deepcopy(data)))

    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        self._check_open()
        self._ops.append(_Op("update", collection, key, copy.deepcopy(fields)))

    async def remove(self, collection: str, key: str) -> None:
        self._check_open()
        self._ops.append(_Op("remove", collection, key))

    async def commit(self) -> None:
        self._check_open()
        self._open = False
        await self._store._commit(self._base_versions, self._reads, self._ops)

    async def rollback(self) -> None:
        self._open = False
        self._ops.clear()


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Thread safety:
        Uses an asyncio lock around every change. Safe to use from
        multiple coroutines.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> tx = await store.begin()
        >>> await tx.write("users", "k1", {"name": "Alice"})
        >>> await tx.commit()
    """

    read_your_writes = False

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, dict[str, Any]]] = {}
        self._versions: dict[DocKey, int] = {}
        self._lock = asyncio.Lock()
        self._connected = False
        self._commit_failure: Exception | None = None
        self.commit_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._docs.clear()
        self._versions.clear()
        logger.debug("InMemoryDocumentStore closed")

    def _check_connected(self) -> None:
        if not self._connected:
            raise StoreConnectionError("Not connected")

    async def new_key(self, collection: str) -> str:
        self._check_connected()
        return uuid.uuid4().hex

    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        self._check_connected()
        data = self._docs.get(collection, {}).get(key)
        return copy.deepcopy(data) if data is not None else None

    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        self._check_connected()
        return run_query(self._docs.get(collection, {}).items(), filters, order, limit)

    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        await self._apply([_Op("write", collection, key, copy.deepcopy(data))])

    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        await self._apply([_Op("update", collection, key, copy.deepcopy(fields))])

    async def remove(self, collection: str, key: str) -> None:
        await self._apply([_Op("remove", collection, key)])

    async def begin(self) -> InMemoryTransaction:
        self._check_connected()
        snapshot = {name: dict(docs) for name, docs in self._docs.items()}
        return InMemoryTransaction(self, snapshot, dict(self._versions))

    async def _apply(self, ops: list[_Op]) -> None:
        self._check_connected()
        async with self._lock:
            self._apply_locked(ops)

    def _apply_locked(self, ops: list[_Op]) -> None:
        # Stage every op first so a failing op leaves the store untouched
        staged: dict[DocKey, dict[str, Any] | None] = {}
        for op in ops:
            doc_key = (op.collection, op.key)
            current = staged.get(doc_key, self._docs.get(op.collection, {}).get(op.key))
            if op.kind == "write":
                staged[doc_key] = op.data
            elif op.kind == "update":
                if current is None:
                    raise StoreError(f"Cannot update missing document {op.collection}/{op.key}")
                staged[doc_key] = apply_update(current, op.data or {})
            else:
                staged[doc_key] = None

        for (collection, key), data in staged.items():
            docs = self._docs.setdefault(collection, {})
            if data is None:
                docs.pop(key, None)
            else:
                docs[key] = data
            self._versions[(collection, key)] = self._versions.get((collection, key), 0) + 1

    async def _commit(
        self,
        base_versions: dict[DocKey, int],
        reads: set[DocKey],
        ops: list[_Op],
    ) -> None:
        self._check_connected()
        async with self._lock:
            if self._commit_failure is not None:
                failure, self._commit_failure = self._commit_failure, None
                raise failure

            touched = reads | {(op.collection, op.key) for op in ops}
            for doc_key in touched:
                if self._versions.get(doc_key, 0) != base_versions.get(doc_key, 0):
                    logger.debug(
                        "Commit conflict in in-memory store",
                        extra={"collection": doc_key[0], "key": doc_key[1]},
                    )
                    raise StoreConflictError(
                        f"Document {doc_key[0]}/{doc_key[1]} changed since transaction began"
                    )
            self._apply_locked(ops)
            self.commit_count += 1

        logger.debug("In-memory transaction committed", extra={"ops": len(ops)})

    # =========================================================================
    # Testing helpers
    # =========================================================================

    def fail_next_commit(self, exception: Exception | None = None) -> None:
        """Make the next transaction commit raise ``exception``."""
        self._commit_failure = exception or StoreError("Injected commit failure")

    def document_count(self, collection: str) -> int:
        return len(self._docs.get(collection, {}))

    def dump(self, collection: str) -> dict[str, dict[str, Any]]:
        """Return a deep copy of every document in a collection."""
        return copy.deepcopy(self._docs.get(collection, {}))

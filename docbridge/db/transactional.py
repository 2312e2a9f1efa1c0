"""
Transactional database writer.

TransactionalDatabaseWriter has the same API as DatabaseWriter but routes
every operation through one StoreTransaction:

- get/query read the snapshot taken when the transaction began
- insert/patch/replace/delete are buffered and applied on commit
- existence checks (patch/replace/delete) consult the snapshot plus the
  writes already queued in this transaction, so a handler can patch a
  document it inserted earlier

Whether get/query observe the transaction's own queued writes depends on
the store (store.read_your_writes); both bundled stores return False.

Invariants:
    - A writer belongs to exactly one mutation invocation
    - After commit() or rollback() every operation raises TransactionAborted
    - Nothing becomes visible to other readers before commit()
"""

from __future__ import annotations

import logging
from typing import Any

from ..errors import TransactionAborted
from ..schema.registry import SchemaRegistry
from ..schema.types import SchemaDefinition
from ..store.base import DocumentStore, RawDocument, StoreTransaction, apply_update
from .database import CreationClock, DatabaseReader, DatabaseWriter
from .query import QueryRequest

logger = logging.getLogger(__name__)

_DELETED = None


class TransactionalDatabaseWriter(DatabaseWriter):
    """Writer bound to one store transaction.

    Example:
        >>> tx = await store.begin()
        >>> db = TransactionalDatabaseWriter(registry, store, tx)
        >>> await db.insert("messages", {"body": "hi"})
        >>> await db.commit()
    """

    def __init__(
        self,
        registry: SchemaRegistry | SchemaDefinition,
        store: DocumentStore,
        transaction: StoreTransaction,
        clock: CreationClock | None = None,
        function_name: str | None = None,
    ) -> None:
        super().__init__(registry, store, clock)
        self._tx = transaction
        self._function_name = function_name
        # (table, key) -> body after queued writes, None when deleted
        self._pending: dict[tuple[str, str], dict[str, Any] | None] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    def _check_usable(self) -> None:
        if self._closed:
            raise TransactionAborted(
                "Transactional writer used after its mutation finished",
                function_name=self._function_name,
            )

    # =========================================================================
    # Store hooks
    # =========================================================================

    async def _read_raw(self, table: str, key: str) -> dict[str, Any] | None:
        return await self._tx.read(table, key)

    async def _query_raw(self, request: QueryRequest) -> list[RawDocument]:
        return await self._tx.query(request.table, request.filters, request.order, request.limit)

    async def _write_raw(self, table: str, key: str, data: dict[str, Any]) -> None:
        await self._tx.write(table, key, data)
        self._pending[(table, key)] = dict(data)

    async def _update_raw(self, table: str, key: str, fields: dict[str, Any]) -> None:
        await self._tx.update(table, key, fields)
        current = self._pending.get((table, key))
        if current is None:
            current = await self._tx.read(table, key) or {}
        self._pending[(table, key)] = apply_update(current, fields)

    async def _remove_raw(self, table: str, key: str) -> None:
        await self._tx.remove(table, key)
        self._pending[(table, key)] = _DELETED

    async def _existing(self, table: str, key: str) -> dict[str, Any] | None:
        if (table, key) in self._pending:
            return self._pending[(table, key)]
        return await self._tx.read(table, key)

    # =========================================================================
    # Unit of work
    # =========================================================================

    async def commit(self) -> None:
        """Commit the queued writes; the writer is closed afterwards."""
        self._check_usable()
        self._closed = True
        await self._tx.commit()
        logger.debug(
            "Transaction committed",
            extra={"function": self._function_name, "documents": len(self._pending)},
        )

    async def rollback(self) -> None:
        """Discard the queued writes; safe to call more than once."""
        if self._closed and not self._tx.is_open:
            return
        self._closed = True
        self._pending.clear()
        await self._tx.rollback()
        logger.debug("Transaction rolled back", extra={"function": self._function_name})

    def reader(self) -> TransactionalDatabaseReader:
        """Read-only view over the same transaction."""
        return TransactionalDatabaseReader(self)


class TransactionalDatabaseReader(DatabaseReader):
    """Read-only view of a TransactionalDatabaseWriter.

    Used as ``ctx.db`` for queries invoked from inside a mutation so they
    read the mutation's snapshot without gaining write access.
    """

    def __init__(self, writer: TransactionalDatabaseWriter) -> None:
        super().__init__(writer.registry, writer._store)
        self._writer = writer

    def _check_usable(self) -> None:
        self._writer._check_usable()

    async def _read_raw(self, table: str, key: str) -> dict[str, Any] | None:
        return await self._writer._read_raw(table, key)

    async def _query_raw(self, request: QueryRequest) -> list[RawDocument]:
        return await self._writer._query_raw(request)

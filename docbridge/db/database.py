"""
Direct database reader and writer.

DatabaseReader exposes get/query over the store; DatabaseWriter adds
insert/patch/replace/delete. Each call on these direct implementations is
its own round trip to the store. The transactional variant lives in
docbridge.db.transactional and reuses these classes through the _*_raw
hooks.

Invariants:
    - Identifiers are parsed (and their table checked) before store access
    - Documents are validated before every write
    - Documents read from the store are validated before being returned
    - _creationTime is set once at insert and never changed afterwards
    - Tables whose name starts with "_" are read-only system tables

How to change safely:
    - Keep all store access behind the _*_raw hooks so the transactional
      writer sees every operation
    - Never return a raw store dict without going through _materialize()
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any

from ..errors import InvalidIdentifier, NotFoundError, SchemaError, ValidationError
from ..ids import DocumentId, decode_id, encode_id, normalize_id, parse_id
from ..schema.registry import SchemaRegistry
from ..schema.types import SYSTEM_FIELDS, SchemaDefinition, is_system_table
from ..store.base import DELETE_FIELD, DocumentStore, RawDocument
from .query import Document, Query, QueryRequest

logger = logging.getLogger(__name__)

CREATION_TIME = "_creationTime"


class CreationClock:
    """Strictly increasing wall-clock milliseconds for _creationTime."""

    def __init__(self) -> None:
        self._last = 0.0

    def now(self) -> float:
        current = time.time() * 1000
        if current <= self._last:
            current = math.nextafter(self._last, math.inf)
        self._last = current
        return current


def as_registry(schema: SchemaRegistry | SchemaDefinition) -> SchemaRegistry:
    if isinstance(schema, SchemaRegistry):
        if not schema.frozen:
            raise SchemaError("Schema registry must be frozen before use")
        return schema
    return SchemaRegistry.from_schema(schema)


class DatabaseReader:
    """Read access: get, query, normalize_id, table.

    Example:
        >>> db = DatabaseReader(registry, store)
        >>> user = await db.get(user_id)
        >>> users = await db.query("users").where("role", "==", "admin").collect()
    """

    def __init__(self, registry: SchemaRegistry | SchemaDefinition, store: DocumentStore) -> None:
        self._registry = as_registry(registry)
        self._store = store

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    # =========================================================================
    # Store hooks
    # =========================================================================

    async def _read_raw(self, table: str, key: str) -> dict[str, Any] | None:
        return await self._store.read(table, key)

    async def _query_raw(self, request: QueryRequest) -> list[RawDocument]:
        return await self._store.query(
            request.table, request.filters, request.order, request.limit
        )

    def _check_usable(self) -> None:
        """Hook for writers that can be closed."""

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_table(self, table: str) -> None:
        if not self._registry.has_table(table):
            raise SchemaError(f"Table '{table}' is not defined in the schema", table=table)

    def _parse(self, document_id: Any, table: str | None = None) -> tuple[str, str]:
        """Parse an identifier and require its table to be declared."""
        doc_id = parse_id(document_id, table)
        id_table, key = decode_id(doc_id)
        if not self._registry.has_table(id_table):
            raise InvalidIdentifier(
                f"Identifier {document_id!r} names unknown table '{id_table}'",
                identifier=document_id,
                expected_table=table,
            )
        return id_table, key

    def _materialize(self, table: str, key: str, data: dict[str, Any]) -> Document:
        body = {name: value for name, value in data.items() if name not in SYSTEM_FIELDS}
        validated = self._registry.validate_document(table, body)
        return {
            "_id": encode_id(table, key),
            CREATION_TIME: data.get(CREATION_TIME),
            **validated,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    async def get(self, document_id: DocumentId | str) -> Document | None:
        """Fetch a document, or None if it does not exist.

        Raises:
            InvalidIdentifier: If the identifier is malformed
        """
        self._check_usable()
        table, key = self._parse(document_id)
        data = await self._read_raw(table, key)
        if data is None:
            return None
        return self._materialize(table, key, data)

    def query(self, table: str) -> Query:
        """Start a query against ``table``."""
        self._check_usable()
        if is_system_table(table):
            raise SchemaError(f"System table '{table}' cannot be queried", table=table)
        definition = self._registry.get_table(table)
        return Query(self, QueryRequest(table=table), frozenset(definition.validator.fields))

    async def execute_query(self, request: QueryRequest) -> list[Document]:
        self._check_usable()
        raw = await self._query_raw(request)
        return [self._materialize(request.table, doc.key, doc.data) for doc in raw]

    def normalize_id(self, table: str, document_id: Any) -> DocumentId | None:
        """Return the identifier if it is valid for ``table``, else None."""
        return normalize_id(table, document_id)

    def table(self, name: str) -> TableReader:
        self._check_table(name)
        return TableReader(self, name)


class DatabaseWriter(DatabaseReader):
    """Read/write access with one store round trip per call.

    Example:
        >>> db = DatabaseWriter(registry, store)
        >>> user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        >>> await db.patch(user_id, {"role": "user"})
        >>> await db.delete(user_id)
    """

    def __init__(
        self,
        registry: SchemaRegistry | SchemaDefinition,
        store: DocumentStore,
        clock: CreationClock | None = None,
    ) -> None:
        super().__init__(registry, store)
        self._clock = clock or CreationClock()

    # =========================================================================
    # Store hooks
    # =========================================================================

    async def _new_key(self, table: str) -> str:
        return await self._store.new_key(table)

    async def _write_raw(self, table: str, key: str, data: dict[str, Any]) -> None:
        await self._store.write(table, key, data)

    async def _update_raw(self, table: str, key: str, fields: dict[str, Any]) -> None:
        await self._store.update(table, key, fields)

    async def _remove_raw(self, table: str, key: str) -> None:
        await self._store.remove(table, key)

    async def _existing(self, table: str, key: str) -> dict[str, Any] | None:
        """Current stored body, used for existence checks and _creationTime."""
        return await self._read_raw(table, key)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_writable(self, table: str) -> None:
        if is_system_table(table):
            raise SchemaError(
                f"System table '{table}' is read-only: tables prefixed with '_' cannot be written",
                table=table,
            )
        self._check_table(table)

    @staticmethod
    def _require_object(value: Any) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise ValidationError(f"Document must be an object, got {type(value).__name__}")
        return value

    async def _require_existing(self, table: str, key: str) -> dict[str, Any]:
        existing = await self._existing(table, key)
        if existing is None:
            doc_id = f"{table}:{key}"
            raise NotFoundError(f"Document {doc_id} not found", table=table, document_id=doc_id)
        return existing

    # =========================================================================
    # Public API
    # =========================================================================

    async def insert(self, table: str, value: dict[str, Any]) -> DocumentId:
        """Validate and insert a new document.

        System fields in ``value`` are ignored; _creationTime is stamped here.

        Returns:
            Identifier of the new document

        Raises:
            SchemaError: Unknown or system table
            ValidationError: Value does not match the table schema
        """
        self._check_usable()
        self._check_writable(table)
        body = {
            name: item
            for name, item in self._require_object(value).items()
            if name not in SYSTEM_FIELDS
        }
        validated = self._registry.validate_document(table, body)

        key = await self._new_key(table)
        document_id = encode_id(table, key)
        await self._write_raw(table, key, {**validated, CREATION_TIME: self._clock.now()})
        logger.debug("Inserted document", extra={"table": table, "id": document_id})
        return document_id

    async def patch(self, document_id: DocumentId | str, partial: dict[str, Any]) -> None:
        """Update only the fields present in ``partial``.

        A None value removes an optional field.

        Raises:
            InvalidIdentifier: Malformed identifier
            ValidationError: A present field is invalid, or a system field was given
            NotFoundError: No document with this identifier
        """
        self._check_usable()
        table, key = self._parse(document_id)
        self._check_writable(table)
        partial = self._require_object(partial)
        for name in SYSTEM_FIELDS:
            if name in partial:
                raise ValidationError(f"System field '{name}' cannot be patched", path=(name,))

        validated = self._registry.validate_partial(table, partial)
        fields = self._registry.get_table(table).validator.fields
        changes: dict[str, Any] = {}
        for name, item in validated.items():
            validator = fields.get(name)
            removable = validator is None or validator.is_optional
            changes[name] = DELETE_FIELD if item is None and removable else item

        await self._require_existing(table, key)
        await self._update_raw(table, key, changes)
        logger.debug(
            "Patched document",
            extra={"table": table, "id": document_id, "fields": sorted(changes)},
        )

    async def replace(self, document_id: DocumentId | str, value: dict[str, Any]) -> None:
        """Overwrite every non-system field, keeping _creationTime.

        Raises:
            InvalidIdentifier: Malformed identifier or mismatching _id in value
            ValidationError: Value does not match the table schema
            NotFoundError: No document with this identifier
        """
        self._check_usable()
        table, key = self._parse(document_id)
        self._check_writable(table)
        value = self._require_object(value)
        if "_id" in value and value["_id"] != document_id:
            raise InvalidIdentifier(
                f"Replacement value has _id {value['_id']!r}, expected {document_id!r}",
                identifier=value["_id"],
                expected_table=table,
            )
        body = {name: item for name, item in value.items() if name not in SYSTEM_FIELDS}
        validated = self._registry.validate_document(table, body)

        existing = await self._require_existing(table, key)
        await self._write_raw(table, key, {**validated, CREATION_TIME: existing.get(CREATION_TIME)})
        logger.debug("Replaced document", extra={"table": table, "id": document_id})

    async def delete(self, document_id: DocumentId | str) -> None:
        """Delete a document.

        Raises:
            InvalidIdentifier: Malformed identifier
            NotFoundError: No document with this identifier
        """
        self._check_usable()
        table, key = self._parse(document_id)
        self._check_writable(table)
        await self._require_existing(table, key)
        await self._remove_raw(table, key)
        logger.debug("Deleted document", extra={"table": table, "id": document_id})

    def table(self, name: str) -> TableWriter:
        self._check_table(name)
        return TableWriter(self, name)


class TableReader:
    """Reader scoped to one table; identifiers of other tables are rejected."""

    def __init__(self, db: DatabaseReader, table: str) -> None:
        self._db = db
        self.name = table

    async def get(self, document_id: DocumentId | str) -> Document | None:
        parse_id(document_id, self.name)
        return await self._db.get(document_id)

    def query(self) -> Query:
        return self._db.query(self.name)

    def normalize_id(self, document_id: Any) -> DocumentId | None:
        return normalize_id(self.name, document_id)


class TableWriter(TableReader):
    """Writer scoped to one table."""

    _db: DatabaseWriter

    def __init__(self, db: DatabaseWriter, table: str) -> None:
        super().__init__(db, table)

    async def insert(self, value: dict[str, Any]) -> DocumentId:
        return await self._db.insert(self.name, value)

    async def patch(self, document_id: DocumentId | str, partial: dict[str, Any]) -> None:
        parse_id(document_id, self.name)
        await self._db.patch(document_id, partial)

    async def replace(self, document_id: DocumentId | str, value: dict[str, Any]) -> None:
        parse_id(document_id, self.name)
        await self._db.replace(document_id, value)

    async def delete(self, document_id: DocumentId | str) -> None:
        parse_id(document_id, self.name)
        await self._db.delete(document_id)

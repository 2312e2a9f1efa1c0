"""
Base protocol and types for the document store boundary.

DocBridge does not implement a storage engine. It talks to an external
transactional document store through the DocumentStore protocol defined
here, along with the filter/ordering value types and store errors.

Documents cross the boundary as plain dicts keyed by collection (the table
name) and store-assigned key. The stored body includes "_creationTime";
"_id" is derived by the caller from (collection, key).

Invariants:
    - Transactions are snapshot-isolated: reads see the state at begin()
    - Transactional writes are buffered and applied atomically on commit()
    - A commit that would overwrite a concurrent change raises
      StoreConflictError and applies nothing
    - read_your_writes tells callers whether transactional reads observe
      the transaction's own buffered writes

How to change safely:
    - Protocol changes require updating all implementations
    - Keep filter operators in sync with docbridge.db.query.OPERATORS
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..config import DocBridgeConfig


class StoreError(Exception):
    """Base exception for store operations."""


class StoreConnectionError(StoreError):
    """Store is not connected or the connection failed."""


class StoreConflictError(StoreError):
    """Commit refused because a concurrent transaction changed the data."""


class _DeleteField:
    """Sentinel requesting removal of a field in update()."""

    _instance: _DeleteField | None = None

    def __new__(cls) -> _DeleteField:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE_FIELD"

    def __copy__(self) -> _DeleteField:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _DeleteField:
        return self


DELETE_FIELD = _DeleteField()


class FilterOp(Enum):
    """Filter operators understood by every store."""

    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    IN = "in"
    NOT_IN = "not-in"
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class FieldFilter:
    """A single (field, operator, value) predicate.

    Documents lacking the field never match, whatever the operator.
    """

    field: str
    op: FilterOp
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "op": self.op.value, "value": self.value}


@dataclass(frozen=True)
class SortKey:
    """Ordering on one field. Documents lacking the field are excluded."""

    field: str
    direction: SortDirection = SortDirection.ASC

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "direction": self.direction.value}


@dataclass(frozen=True)
class RawDocument:
    """A stored document as returned by the store."""

    key: str
    data: dict[str, Any]


@runtime_checkable
class StoreTransaction(Protocol):
    """One unit of work against the store.

    Reads observe the snapshot taken at begin. Writes are buffered until
    commit(). After commit() or rollback() the transaction is closed.
    """

    @abstractmethod
    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        ...

    @abstractmethod
    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        """Merge ``fields`` into the document; DELETE_FIELD removes a field."""
        ...

    @abstractmethod
    async def remove(self, collection: str, key: str) -> None:
        ...

    @abstractmethod
    async def commit(self) -> None:
        """Apply buffered writes atomically.

        Raises:
            StoreConflictError: If a concurrent commit touched the same data
            StoreError: For other store-side failures
        """
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> key = await store.new_key("users")
        >>> await store.write("users", key, {"name": "Alice", "_creationTime": 1.0})
        >>> await store.read("users", key)
        {'name': 'Alice', '_creationTime': 1.0}
    """

    read_your_writes: bool

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def new_key(self, collection: str) -> str:
        """Return a fresh, unused document key for ``collection``."""
        ...

    @abstractmethod
    async def read(self, collection: str, key: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def write(self, collection: str, key: str, data: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def remove(self, collection: str, key: str) -> None:
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: tuple[FieldFilter, ...] = (),
        order: tuple[SortKey, ...] = (),
        limit: int | None = None,
    ) -> list[RawDocument]:
        ...

    @abstractmethod
    async def begin(self) -> StoreTransaction:
        """Start a snapshot-isolated transaction."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...


def apply_update(data: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    """Return ``data`` merged with ``fields``, honouring DELETE_FIELD."""
    merged = dict(data)
    for name, value in fields.items():
        if value is DELETE_FIELD:
            merged.pop(name, None)
        else:
            merged[name] = value
    return merged


def create_store(config: DocBridgeConfig) -> DocumentStore:
    """Factory function to create a document store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryDocumentStore
    from .sqlite import SqliteDocumentStore

    if config.storage.backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    elif config.storage.backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(
            config.storage.sqlite_path,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.storage.backend}")

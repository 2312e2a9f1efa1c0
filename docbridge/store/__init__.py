"""
Document store boundary and bundled backends.

Exports:
- DocumentStore, StoreTransaction: Protocols every backend implements
- InMemoryDocumentStore: Test/local backend
- SqliteDocumentStore: SQLite file backend
- create_store: Factory from DocBridgeConfig
"""

from .base import (
    DELETE_FIELD,
    DocumentStore,
    FieldFilter,
    FilterOp,
    RawDocument,
    SortDirection,
    SortKey,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
    StoreTransaction,
    create_store,
)
from .memory import InMemoryDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    "DELETE_FIELD",
    "DocumentStore",
    "StoreTransaction",
    "FieldFilter",
    "FilterOp",
    "SortKey",
    "SortDirection",
    "RawDocument",
    "StoreError",
    "StoreConnectionError",
    "StoreConflictError",
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
    "create_store",
]

"""
Database reader/writer and query builder.

Exports:
- DatabaseReader, DatabaseWriter: Direct implementations
- TransactionalDatabaseWriter: Writer bound to one store transaction
- TableReader, TableWriter: Table-scoped views
- Query, QueryRequest, QueryState: Query builder
"""

from .database import (
    CreationClock,
    DatabaseReader,
    DatabaseWriter,
    TableReader,
    TableWriter,
)
from .query import OPERATORS, Document, Query, QueryRequest, QueryState
from .transactional import TransactionalDatabaseReader, TransactionalDatabaseWriter

__all__ = [
    "CreationClock",
    "DatabaseReader",
    "DatabaseWriter",
    "TransactionalDatabaseWriter",
    "TransactionalDatabaseReader",
    "TableReader",
    "TableWriter",
    "Document",
    "Query",
    "QueryRequest",
    "QueryState",
    "OPERATORS",
]

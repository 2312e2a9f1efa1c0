"""
DocBridge - typed document access layer.

Declare tables with validators, register query/mutation/action functions
and run them against a pluggable document store. Every mutation is one
atomic unit of work.

Example:
    >>> from docbridge import v, define_schema, define_table, mutation
    >>> schema = define_schema({
    ...     "users": define_table({"name": v.string(), "email": v.optional(v.string())}),
    ... })
    >>> @mutation(args={"name": v.string()})
    ... async def create_user(ctx, args):
    ...     return await ctx.db.insert("users", {"name": args["name"]})
"""

from .errors import (
    DocBridgeError,
    FunctionNotFound,
    HandlerError,
    InvalidArgument,
    InvalidIdentifier,
    MultipleResults,
    NotFoundError,
    QueryError,
    SchemaError,
    TransactionAborted,
    ValidationError,
)
from .functions import (
    ActionCtx,
    FunctionRegistry,
    FunctionResult,
    FunctionRunner,
    MutationCtx,
    QueryCtx,
    action,
    internal_action,
    internal_mutation,
    internal_query,
    mutation,
    query,
)
from .ids import DocumentId, normalize_id, parse_id
from .schema import (
    SchemaDefinition,
    SchemaRegistry,
    TableDefinition,
    define_schema,
    define_table,
    load_schema_file,
    v,
)
from .store import DELETE_FIELD, InMemoryDocumentStore, SqliteDocumentStore

__version__ = "1.0.0"

__all__ = [
    # Schema
    "v",
    "define_schema",
    "define_table",
    "SchemaDefinition",
    "TableDefinition",
    "SchemaRegistry",
    "load_schema_file",
    # Functions
    "query",
    "mutation",
    "action",
    "internal_query",
    "internal_mutation",
    "internal_action",
    "FunctionRegistry",
    "FunctionRunner",
    "FunctionResult",
    "QueryCtx",
    "MutationCtx",
    "ActionCtx",
    # Ids
    "DocumentId",
    "parse_id",
    "normalize_id",
    # Stores
    "DELETE_FIELD",
    "InMemoryDocumentStore",
    "SqliteDocumentStore",
    # Errors
    "DocBridgeError",
    "ValidationError",
    "InvalidIdentifier",
    "NotFoundError",
    "QueryError",
    "InvalidArgument",
    "MultipleResults",
    "TransactionAborted",
    "HandlerError",
    "FunctionNotFound",
    "SchemaError",
]

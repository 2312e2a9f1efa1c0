"""
Error types for DocBridge.

This module defines every exception kind surfaced by the access layer:
- DocBridgeError: Base exception
- InvalidIdentifier: Malformed or cross-table document identifier
- ValidationError: Document or argument failed its validator
- NotFoundError: patch/replace/delete against a missing document
- QueryError: Malformed query request (InvalidArgument, MultipleResults)
- TransactionAborted: Unit of work could not commit or was misused
- HandlerError: Application error raised on purpose by handler code
- FunctionNotFound: Unknown function name
- SchemaError: Schema definition or lookup problem

Invariants:
    - All errors inherit from DocBridgeError
    - Every error carries a stable code for programmatic handling
    - Identifier and validation errors are raised before any store access
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class DocBridgeError(Exception):
    """Base exception for all DocBridge errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code_default = "DOCBRIDGE_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.code_default
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {"error": self.message, "code": self.code, "details": self.details}


class InvalidIdentifier(DocBridgeError):
    """Document identifier is malformed or names the wrong table.

    Raised when:
    - The value is not a "<table>:<key>" string
    - The table prefix does not match the table being accessed
    """

    code_default = "INVALID_IDENTIFIER"

    def __init__(
        self,
        message: str,
        identifier: Any = None,
        expected_table: str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"identifier": identifier, "expected_table": expected_table},
        )
        self.identifier = identifier
        self.expected_table = expected_table


class ValidationError(DocBridgeError):
    """A value failed validation.

    Attributes:
        path: Field path of the offending value (empty for the root)
        errors: Individual error messages
    """

    code_default = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        path: Sequence[str | int] = (),
        errors: list[str] | None = None,
    ) -> None:
        self.path = tuple(path)
        self.errors = errors or [message]
        super().__init__(
            message,
            details={"path": self.path_str, "errors": self.errors},
        )

    @property
    def path_str(self) -> str:
        """Dotted rendering of the path, with list indexes in brackets."""
        rendered = ""
        for part in self.path:
            if isinstance(part, int):
                rendered += f"[{part}]"
            else:
                rendered += f".{part}" if rendered else part
        return rendered


class NotFoundError(DocBridgeError):
    """Document not found.

    get() returns None instead; this is raised by patch, replace and delete.
    """

    code_default = "NOT_FOUND"

    def __init__(self, message: str, table: str, document_id: str) -> None:
        super().__init__(message, details={"table": table, "id": document_id})
        self.table = table
        self.document_id = document_id


class QueryError(DocBridgeError):
    """Malformed or unsatisfiable query request."""

    code_default = "QUERY_ERROR"

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message, details={"table": table})
        self.table = table


class InvalidArgument(QueryError):
    """An argument to a query or runner operation is out of range."""

    code_default = "INVALID_ARGUMENT"


class MultipleResults(QueryError):
    """unique() matched more than one document."""

    code_default = "MULTIPLE_RESULTS"


class TransactionAborted(DocBridgeError):
    """The unit of work was rolled back.

    Raised when:
    - The store refused to commit (write conflict, store-side fault)
    - A mutation tried to open a nested unit of work
    - A closed transactional writer was used again
    """

    code_default = "TRANSACTION_ABORTED"

    def __init__(self, message: str, function_name: str | None = None) -> None:
        super().__init__(message, details={"function": function_name})
        self.function_name = function_name


class HandlerError(DocBridgeError):
    """Application-level error raised deliberately by handler code.

    The runner propagates it unchanged (after rollback for mutations), so
    callers can inspect ``data``.

    Example:
        >>> raise HandlerError("Insufficient funds", data={"balance": 10})
    """

    code_default = "HANDLER_ERROR"

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(message, details={"data": data})
        self.data = data


class FunctionNotFound(DocBridgeError):
    """No registered function has the requested name."""

    code_default = "FUNCTION_NOT_FOUND"

    def __init__(self, message: str, name: str | None = None) -> None:
        super().__init__(message, details={"function": name})
        self.name = name


class SchemaError(DocBridgeError):
    """Schema-related error.

    Raised when:
    - A table is not declared in the schema
    - A schema document is malformed
    - An index references an unknown field
    """

    code_default = "SCHEMA_ERROR"

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message, details={"table": table})
        self.table = table

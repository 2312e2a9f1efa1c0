"""
Query builder for DocBridge.

A Query is an immutable, lazily executed description of a read against one
table: conjunctive filters, a composite ordering and an optional limit.
Chaining calls (where/order/limit) return a new Query and never touch the
store; only terminal operations (collect, first, take, unique) and async
iteration execute it.

States:
    preparing: accumulating filters/order/limit, no store contact
    executing: an async iteration is in progress
    closed:    aclose() was called before iteration finished
    consumed:  iteration finished

Invariants:
    - The receiver of a chaining call is never modified
    - Operators are exactly those of the store (no client-side filtering)
    - Every returned document has passed table validation
    - unique() fetches at most two documents and fails if two come back

Example:
    >>> admins = await db.query("users").where("role", "==", "admin").order("name").take(10)
    >>> async for user in db.query("users").where("role", "==", "user"):
    ...     print(user["name"])
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from ..errors import InvalidArgument, MultipleResults, QueryError
from ..store.base import FieldFilter, FilterOp, SortDirection, SortKey

logger = logging.getLogger(__name__)

Document = dict[str, Any]

OPERATORS: dict[str, FilterOp] = {op.value: op for op in FilterOp}

_LIST_OPERATORS = (FilterOp.IN, FilterOp.NOT_IN, FilterOp.ARRAY_CONTAINS_ANY)


class QueryState(Enum):
    PREPARING = "preparing"
    EXECUTING = "executing"
    CLOSED = "closed"
    CONSUMED = "consumed"


@dataclass(frozen=True)
class QueryRequest:
    """Accumulated description of a query against one table."""

    table: str
    filters: tuple[FieldFilter, ...] = ()
    order: tuple[SortKey, ...] = ()
    limit: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "table": self.table,
            "filters": [f.to_dict() for f in self.filters],
            "order": [s.to_dict() for s in self.order],
            "limit": self.limit,
        }


class QueryExecutor(Protocol):
    async def execute_query(self, request: QueryRequest) -> list[Document]:
        ...


def check_limit(n: Any, table: str | None = None) -> int:
    """Validate a limit/take argument.

    Raises:
        InvalidArgument: Unless n is a non-negative integer
    """
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise InvalidArgument(f"Limit must be a non-negative integer, got {n!r}", table=table)
    return n


class Query:
    """Chainable query over one table.

    Do not construct directly; use ``db.query(table)``.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        request: QueryRequest,
        field_names: frozenset[str] | None = None,
    ) -> None:
        self._executor = executor
        self._request = request
        self._field_names = field_names
        self._state = QueryState.PREPARING
        self._stream_gen: AsyncGenerator[Document, None] | None = None

    def __repr__(self) -> str:
        return f"Query({self._request.to_dict()!r}, state={self._state.value})"

    @property
    def request(self) -> QueryRequest:
        return self._request

    @property
    def state(self) -> QueryState:
        return self._state

    def _derive(self, request: QueryRequest) -> Query:
        return Query(self._executor, request, self._field_names)

    def _check_field(self, field: Any) -> str:
        table = self._request.table
        if not isinstance(field, str) or not field:
            raise QueryError(f"Field name must be a non-empty string, got {field!r}", table=table)
        root = field.split(".", 1)[0]
        if self._field_names is not None and root != "_creationTime" and root not in self._field_names:
            raise QueryError(f"Table '{table}' has no field '{root}'", table=table)
        return field

    # =========================================================================
    # Chaining
    # =========================================================================

    def where(self, field: str, op: str, value: Any) -> Query:
        """Add a filter; filters are combined with AND.

        Raises:
            QueryError: Unknown operator or field, or a list operator
                given a non-list value
        """
        field = self._check_field(field)
        filter_op = OPERATORS.get(op)
        if filter_op is None:
            raise QueryError(
                f"Unsupported operator {op!r}. Valid operators: {list(OPERATORS)}",
                table=self._request.table,
            )
        if filter_op in _LIST_OPERATORS:
            if not isinstance(value, (list, tuple)):
                raise QueryError(
                    f"Operator '{op}' needs a list value, got {type(value).__name__}",
                    table=self._request.table,
                )
            value = list(value)
        flt = FieldFilter(field=field, op=filter_op, value=value)
        return self._derive(replace(self._request, filters=self._request.filters + (flt,)))

    def order(self, field: str, direction: str = "asc") -> Query:
        """Add a sort key; multiple calls sort in call order."""
        field = self._check_field(field)
        try:
            sort_direction = SortDirection(direction)
        except ValueError:
            raise QueryError(
                f"Order direction must be 'asc' or 'desc', got {direction!r}",
                table=self._request.table,
            ) from None
        key = SortKey(field=field, direction=sort_direction)
        return self._derive(replace(self._request, order=self._request.order + (key,)))

    def limit(self, n: int) -> Query:
        n = check_limit(n, self._request.table)
        return self._derive(replace(self._request, limit=n))

    # =========================================================================
    # Terminal operations
    # =========================================================================

    async def collect(self) -> list[Document]:
        """Execute and return every matching document."""
        logger.debug("Executing query", extra={"query": self._request.to_dict()})
        return await self._executor.execute_query(self._request)

    async def first(self) -> Document | None:
        results = await self.limit(1).collect()
        return results[0] if results else None

    async def take(self, n: int) -> list[Document]:
        return await self.limit(n).collect()

    async def unique(self) -> Document | None:
        """Return the single match, None for no match.

        Raises:
            MultipleResults: If more than one document matches
        """
        results = await self.limit(2).collect()
        if len(results) > 1:
            raise MultipleResults(
                f"unique() query on '{self._request.table}' matched more than one document",
                table=self._request.table,
            )
        return results[0] if results else None

    # =========================================================================
    # Streaming
    # =========================================================================

    def __aiter__(self) -> AsyncIterator[Document]:
        if self._state != QueryState.PREPARING:
            raise QueryError(
                f"Query is {self._state.value} and cannot be iterated again",
                table=self._request.table,
            )
        self._state = QueryState.EXECUTING
        self._stream_gen = self._stream()
        return self._stream_gen

    async def _stream(self) -> AsyncGenerator[Document, None]:
        try:
            documents = await self._executor.execute_query(self._request)
            for document in documents:
                if self._state != QueryState.EXECUTING:
                    return
                yield document
        finally:
            if self._state == QueryState.EXECUTING:
                self._state = QueryState.CONSUMED

    async def aclose(self) -> None:
        """Stop iteration; the query cannot be iterated afterwards."""
        if self._state in (QueryState.PREPARING, QueryState.EXECUTING):
            self._state = QueryState.CLOSED
        gen, self._stream_gen = self._stream_gen, None
        # A generator suspended inside the executor is stopped by the state check
        if gen is not None and not gen.ag_running:
            await gen.aclose()

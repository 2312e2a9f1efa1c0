"""
Handler contexts.

- QueryCtx: read-only database plus run_query
- MutationCtx: transactional writer plus run_query on the same snapshot
- ActionCtx: run_query / run_mutation / run_action only, no database handle
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..db.database import DatabaseReader
    from ..db.transactional import TransactionalDatabaseWriter
    from .registration import RegisteredFunction

RunFunction = Callable[["RegisteredFunction | str", "dict[str, Any] | None"], Awaitable[Any]]


@dataclass(frozen=True)
class QueryCtx:
    db: DatabaseReader
    run_query: RunFunction


@dataclass(frozen=True)
class MutationCtx:
    db: TransactionalDatabaseWriter
    run_query: RunFunction


@dataclass(frozen=True)
class ActionCtx:
    run_query: RunFunction
    run_mutation: RunFunction
    run_action: RunFunction

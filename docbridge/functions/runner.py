"""
Function runner for DocBridge.

The runner executes registered query, mutation and action functions:

    validating-args -> executing-handler -> {committing | rolling-back} -> done

- Queries get a direct, read-only database
- Mutations get a transactional writer; the whole handler body is one unit
  of work, committed if the handler returns and rolled back otherwise
- Actions get run_query/run_mutation/run_action callbacks only; each call
  they make is its own unit of work

Invariants:
    - Arguments are validated before any store access
    - A mutation never opens a nested unit of work; calling run_mutation
      while a mutation is running raises TransactionAborted
    - Handler exceptions are re-raised unchanged after rollback
    - A failed commit raises TransactionAborted and leaves nothing visible
    - Cancellation (e.g. a caller timeout) rolls back and propagates

How to change safely:
    - Every path out of run_mutation must either commit or roll back
    - Keep execute() catching only what it can describe in a FunctionResult

Example:
    >>> runner = FunctionRunner(schema, store, functions)
    >>> user_id = await runner.run_mutation(create_user, {"name": "Alice"})
    >>> result = await runner.execute("users:get", {"id": user_id})
    >>> result.success
    True
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from contextvars import ContextVar
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from ..config import RunnerConfig
from ..db.database import CreationClock, DatabaseReader, DatabaseWriter
from ..db.transactional import TransactionalDatabaseWriter
from ..errors import DocBridgeError, InvalidArgument, TransactionAborted
from ..schema.registry import SchemaRegistry
from ..schema.types import SchemaDefinition
from ..schema.validators import validate_args
from ..store.base import DocumentStore, StoreError
from .context import ActionCtx, MutationCtx, QueryCtx
from .registration import FunctionKind, RegisteredFunction
from .registry import FunctionRegistry

logger = logging.getLogger(__name__)

# Name of the mutation running in the current task, if any
_active_mutation: ContextVar[str | None] = ContextVar("docbridge_active_mutation", default=None)


@dataclass(frozen=True)
class FunctionResult:
    """Outcome of runner.execute().

    Attributes:
        success: Whether the function returned normally
        value: Return value on success
        error: Error message on failure
        error_code: Stable error code on failure
        details: Error context on failure
        duration_ms: Wall time of the invocation
    """

    success: bool
    value: Any = None
    error: str | None = None
    error_code: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "value": self.value}
        return {
            "success": False,
            "error": self.error,
            "code": self.error_code,
            "details": self.details,
        }


class FunctionRunner:
    """Executes registered functions against a schema and a store.

    Attributes:
        registry: Frozen schema registry shared by every invocation
        store: Document store
        functions: Name -> function registry used by run()/execute()
    """

    def __init__(
        self,
        schema: SchemaRegistry | SchemaDefinition,
        store: DocumentStore,
        functions: FunctionRegistry | None = None,
        config: RunnerConfig | None = None,
    ) -> None:
        self.store = store
        self.functions = functions if functions is not None else FunctionRegistry()
        self.config = config or RunnerConfig()
        self._clock = CreationClock()
        self.db = DatabaseWriter(schema, store, self._clock)
        self.registry = self.db.registry
        self._reader = DatabaseReader(self.registry, store)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve(self, fn: RegisteredFunction | str, kind: FunctionKind | None = None) -> RegisteredFunction:
        if isinstance(fn, str):
            fn = self.functions.get(fn)
        if not isinstance(fn, RegisteredFunction):
            raise InvalidArgument(f"Expected a registered function or name, got {fn!r}")
        if kind is not None and fn.kind != kind:
            raise InvalidArgument(
                f"Function '{fn.function_name}' is a {fn.kind.value}, not a {kind.value}"
            )
        return fn

    @staticmethod
    async def _invoke(fn: RegisteredFunction, ctx: Any, args: dict[str, Any]) -> Any:
        result = fn.handler(ctx, args)
        if inspect.isawaitable(result):
            result = await result
        if fn.returns is not None:
            result = fn.returns.validate(result)
        return result

    def _log_call(self, fn: RegisteredFunction, started: float) -> None:
        duration_ms = (time.monotonic() - started) * 1000
        extra = {"function": fn.function_name, "kind": fn.kind.value, "duration_ms": duration_ms}
        if duration_ms > self.config.slow_call_ms:
            logger.warning("Slow function call", extra=extra)
        else:
            logger.debug("Function call finished", extra=extra)

    # =========================================================================
    # Queries
    # =========================================================================

    async def run_query(self, fn: RegisteredFunction | str, args: dict[str, Any] | None = None) -> Any:
        """Run a query function against the direct reader."""
        return await self._run_query_in(self._reader, fn, args)

    async def _run_query_in(
        self,
        db: DatabaseReader,
        fn: RegisteredFunction | str,
        args: dict[str, Any] | None = None,
    ) -> Any:
        fn = self._resolve(fn, FunctionKind.QUERY)
        validated = validate_args(fn.args, args)
        started = time.monotonic()
        ctx = QueryCtx(db=db, run_query=partial(self._run_query_in, db))
        try:
            return await self._invoke(fn, ctx, validated)
        finally:
            self._log_call(fn, started)

    # =========================================================================
    # Mutations
    # =========================================================================

    async def run_mutation(self, fn: RegisteredFunction | str, args: dict[str, Any] | None = None) -> Any:
        """Run a mutation function as one atomic unit of work.

        Raises:
            TransactionAborted: Nested mutation, or the store refused the commit
            ValidationError: Invalid arguments or return value
            Exception: Whatever the handler raised, after rollback
        """
        fn = self._resolve(fn, FunctionKind.MUTATION)
        name = self.functions.name_of(fn)
        active = _active_mutation.get()
        if active is not None:
            raise TransactionAborted(
                f"Mutation '{name}' cannot run inside mutation '{active}': "
                "nested transactions are not supported",
                function_name=name,
            )
        validated = validate_args(fn.args, args)

        started = time.monotonic()
        tx = await self.store.begin()
        db = TransactionalDatabaseWriter(
            self.registry, self.store, tx, clock=self._clock, function_name=name
        )
        ctx = MutationCtx(db=db, run_query=partial(self._run_query_in, db.reader()))
        token = _active_mutation.set(name)
        try:
            result = await self._invoke(fn, ctx, validated)
        except BaseException as e:
            await self._rollback(db, name, e)
            raise
        finally:
            _active_mutation.reset(token)

        try:
            await db.commit()
        except Exception as e:
            logger.warning(
                "Mutation commit failed",
                extra={"function": name, "error": str(e)},
            )
            raise TransactionAborted(
                f"Mutation '{name}' could not commit: {e}", function_name=name
            ) from e
        finally:
            self._log_call(fn, started)
        return result

    async def _rollback(self, db: TransactionalDatabaseWriter, name: str, cause: BaseException) -> None:
        try:
            await db.rollback()
        except Exception:
            logger.exception("Rollback failed", extra={"function": name})
        logger.debug(
            "Mutation rolled back",
            extra={"function": name, "cause": type(cause).__name__},
        )

    # =========================================================================
    # Actions
    # =========================================================================

    async def run_action(self, fn: RegisteredFunction | str, args: dict[str, Any] | None = None) -> Any:
        """Run an action; it reaches data only through the ctx callbacks."""
        fn = self._resolve(fn, FunctionKind.ACTION)
        validated = validate_args(fn.args, args)
        started = time.monotonic()
        ctx = ActionCtx(
            run_query=self.run_query,
            run_mutation=self.run_mutation,
            run_action=self.run_action,
        )
        try:
            return await self._invoke(fn, ctx, validated)
        finally:
            self._log_call(fn, started)

    # =========================================================================
    # Dispatch by kind
    # =========================================================================

    async def run(self, fn: RegisteredFunction | str, args: dict[str, Any] | None = None) -> Any:
        """Run a function (or function name) according to its kind."""
        fn = self._resolve(fn)
        if fn.kind == FunctionKind.QUERY:
            return await self.run_query(fn, args)
        if fn.kind == FunctionKind.MUTATION:
            return await self.run_mutation(fn, args)
        return await self.run_action(fn, args)

    async def execute(
        self,
        fn: RegisteredFunction | str,
        args: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> FunctionResult:
        """Run a function and describe the outcome instead of raising.

        DocBridge errors, store faults, timeouts and exceptions raised by
        handler code become failed results. Cancellation still propagates.
        """
        timeout = timeout if timeout is not None else self.config.function_timeout_s
        started = time.monotonic()

        def elapsed() -> float:
            return (time.monotonic() - started) * 1000

        try:
            if timeout:
                value = await asyncio.wait_for(self.run(fn, args), timeout=timeout)
            else:
                value = await self.run(fn, args)
        except DocBridgeError as e:
            return FunctionResult(
                success=False,
                error=e.message,
                error_code=e.code,
                details=e.details,
                duration_ms=elapsed(),
            )
        except asyncio.TimeoutError:
            return FunctionResult(
                success=False,
                error=f"Function timed out after {timeout}s",
                error_code="TIMEOUT",
                duration_ms=elapsed(),
            )
        except StoreError as e:
            logger.error("Store error during function call", extra={"error": str(e)})
            return FunctionResult(
                success=False, error=str(e), error_code="STORE_ERROR", duration_ms=elapsed()
            )
        except Exception as e:
            logger.debug("Handler raised", extra={"error": repr(e)})
            return FunctionResult(
                success=False,
                error=str(e),
                error_code="HANDLER_ERROR",
                details={"exception": type(e).__name__},
                duration_ms=elapsed(),
            )
        return FunctionResult(success=True, value=value, duration_ms=elapsed())

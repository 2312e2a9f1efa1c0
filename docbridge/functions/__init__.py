"""
Function registration and execution.

Exports:
- query, mutation, action (+ internal_* variants): Registration builders
- RegisteredFunction, FunctionKind, Visibility: Registered function values
- FunctionRegistry: Explicit name -> function registry
- FunctionRunner, FunctionResult: Execution with atomic mutations
- QueryCtx, MutationCtx, ActionCtx: Handler contexts
"""

from .context import ActionCtx, MutationCtx, QueryCtx
from .registration import (
    FunctionKind,
    RegisteredFunction,
    Visibility,
    action,
    internal_action,
    internal_mutation,
    internal_query,
    mutation,
    query,
)
from .registry import FunctionRegistry
from .runner import FunctionResult, FunctionRunner

__all__ = [
    "query",
    "mutation",
    "action",
    "internal_query",
    "internal_mutation",
    "internal_action",
    "RegisteredFunction",
    "FunctionKind",
    "Visibility",
    "FunctionRegistry",
    "FunctionRunner",
    "FunctionResult",
    "QueryCtx",
    "MutationCtx",
    "ActionCtx",
]

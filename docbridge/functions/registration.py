"""
Function registration surface.

Handlers are registered as immutable RegisteredFunction values carrying
their kind (query, mutation, action), visibility (public, internal) and
optional argument/return validators. The builders work both as plain calls
and as decorators:

    >>> list_users = query(handler=_list_users, args={"role": v.string()})

    >>> @mutation(args={"name": v.string()}, returns=v.id("users"))
    ... async def create_user(ctx, args):
    ...     return await ctx.db.insert("users", {"name": args["name"]})

    >>> @internal_query
    ... async def count_users(ctx, args):
    ...     return len(await ctx.db.query("users").collect())

Handlers take (ctx, args) and may be sync or async.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import SchemaError
from ..schema.validators import ObjectValidator, Validator, as_object_validator

Handler = Callable[[Any, dict[str, Any]], Any]


class FunctionKind(Enum):
    QUERY = "query"
    MUTATION = "mutation"
    ACTION = "action"


class Visibility(Enum):
    PUBLIC = "public"
    INTERNAL = "internal"


@dataclass(frozen=True)
class RegisteredFunction:
    """A handler plus its kind, visibility and validators.

    Attributes:
        handler: Callable taking (ctx, args)
        kind: query, mutation or action
        visibility: public functions are reachable over HTTP, internal ones
            only through the runner
        args: Object validator for the argument payload (None accepts any object)
        returns: Validator for the handler's return value
        name: Registration name (defaults to the handler's __name__)
    """

    handler: Handler
    kind: FunctionKind
    visibility: Visibility = Visibility.PUBLIC
    args: ObjectValidator | None = None
    returns: Validator | None = None
    name: str | None = None

    @property
    def function_name(self) -> str:
        return self.name or getattr(self.handler, "__name__", "<anonymous>")

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC

    def export_args(self) -> str:
        """JSON description of the argument validator."""
        if self.args is None:
            return json.dumps({"type": "any"})
        return json.dumps(self.args.to_dict())

    def export_returns(self) -> str:
        """JSON description of the return validator."""
        if self.returns is None:
            return json.dumps({"type": "any"})
        return json.dumps(self.returns.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.function_name,
            "kind": self.kind.value,
            "visibility": self.visibility.value,
            "args": json.loads(self.export_args()),
            "returns": json.loads(self.export_returns()),
        }


def _builder(kind: FunctionKind, visibility: Visibility) -> Callable[..., Any]:
    def build(
        handler: Handler | None = None,
        *,
        args: ObjectValidator | Mapping[str, Validator] | None = None,
        returns: Validator | None = None,
        name: str | None = None,
    ) -> Any:
        if returns is not None and not isinstance(returns, Validator):
            raise SchemaError(f"returns must be a validator, got {returns!r}")
        args_validator = as_object_validator(args) if args is not None else None

        def register(fn: Handler) -> RegisteredFunction:
            if not callable(fn):
                raise SchemaError(f"{kind.value} handler must be callable, got {fn!r}")
            return RegisteredFunction(
                handler=fn,
                kind=kind,
                visibility=visibility,
                args=args_validator,
                returns=returns,
                name=name,
            )

        if handler is None:
            return register
        return register(handler)

    build.__name__ = kind.value if visibility == Visibility.PUBLIC else f"internal_{kind.value}"
    build.__doc__ = f"Register a {visibility.value} {kind.value} handler."
    return build


query = _builder(FunctionKind.QUERY, Visibility.PUBLIC)
mutation = _builder(FunctionKind.MUTATION, Visibility.PUBLIC)
action = _builder(FunctionKind.ACTION, Visibility.PUBLIC)
internal_query = _builder(FunctionKind.QUERY, Visibility.INTERNAL)
internal_mutation = _builder(FunctionKind.MUTATION, Visibility.INTERNAL)
internal_action = _builder(FunctionKind.ACTION, Visibility.INTERNAL)

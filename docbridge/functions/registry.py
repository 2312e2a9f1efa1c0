"""
Function registry.

Maps names to RegisteredFunction values so functions can be invoked by
name (from the HTTP gateway or runner.run("name")). The registry is an
explicit object owned by the application and handed to the runner; there
is no process-wide instance.

Invariants:
    - Names are unique within a registry
    - Once frozen, no new functions can be registered

Example:
    >>> functions = FunctionRegistry()
    >>> functions.register(create_user)
    >>> functions.register_module(my_app.users, prefix="users:")
    >>> functions.freeze()
    >>> functions.get("users:list")
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from types import ModuleType

from ..errors import FunctionNotFound, SchemaError
from .registration import RegisteredFunction

logger = logging.getLogger(__name__)


class FunctionRegistry:
    """Name -> RegisteredFunction mapping."""

    def __init__(self) -> None:
        self._functions: dict[str, RegisteredFunction] = {}
        self._frozen = False
        self._lock = threading.Lock()

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, fn: RegisteredFunction, name: str | None = None) -> str:
        """Register a function under ``name`` (default: its own name).

        Returns:
            The name it was registered under

        Raises:
            SchemaError: If frozen, not a RegisteredFunction, or the name is taken
        """
        if not isinstance(fn, RegisteredFunction):
            raise SchemaError(f"Expected a registered function, got {fn!r}")
        name = name or fn.function_name
        with self._lock:
            if self._frozen:
                raise SchemaError(f"Cannot register function '{name}': registry is frozen")
            if name in self._functions:
                raise SchemaError(f"Function '{name}' already registered")
            self._functions[name] = fn
        logger.debug(f"Registered {fn.visibility.value} {fn.kind.value}: {name}")
        return name

    def register_module(self, module: ModuleType, prefix: str = "") -> list[str]:
        """Register every RegisteredFunction attribute of a module.

        Functions are named ``prefix + attribute name`` unless they were
        given an explicit name.
        """
        names = []
        for attr, value in sorted(vars(module).items()):
            if isinstance(value, RegisteredFunction):
                names.append(self.register(value, value.name or f"{prefix}{attr}"))
        return names

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True
        logger.info(f"Function registry frozen with {len(self._functions)} functions")

    def get(self, name: str) -> RegisteredFunction:
        """Look up a function.

        Raises:
            FunctionNotFound: If no function has this name
        """
        fn = self._functions.get(name)
        if fn is None:
            raise FunctionNotFound(f"Function '{name}' is not registered", name=name)
        return fn

    def name_of(self, fn: RegisteredFunction) -> str:
        for name, registered in self._functions.items():
            if registered is fn:
                return name
        return fn.function_name

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def __iter__(self) -> Iterator[str]:
        return iter(self._functions)

    def items(self) -> Iterator[tuple[str, RegisteredFunction]]:
        yield from self._functions.items()

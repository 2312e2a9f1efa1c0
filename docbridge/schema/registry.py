"""
Schema Registry for DocBridge.

The SchemaRegistry is the runtime form of a schema. It provides:
- Registration of table definitions
- Lookup by table name
- Document validation against a table
- Schema fingerprinting for consistency checks
- Freeze mechanism to prevent runtime modifications

Invariants:
    - Registry is mutable during startup, frozen before serving
    - Once frozen, no new tables can be registered
    - Lookups of undeclared tables raise SchemaError
    - Fingerprint changes when the schema changes

How to change safely:
    - Build the registry with from_schema() (it is returned frozen)
    - Never modify registered tables after freeze

Example:
    >>> registry = SchemaRegistry.from_schema(schema)
    >>> registry.fingerprint
    'sha256:abc123...'
    >>> registry.validate_document("users", {"name": "Alice"})
    {'name': 'Alice'}
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterator
from typing import Any

from ..errors import SchemaError
from .types import SchemaDefinition, TableDefinition, define_schema

logger = logging.getLogger(__name__)


class RegistryFrozenError(SchemaError):
    """Raised when attempting to modify a frozen registry."""


class SchemaRegistry:
    """Registry of table definitions, shared read-only once frozen.

    Thread-safety:
        - Registration is thread-safe (uses internal lock)
        - Lookups after freeze are lock-free
        - Freeze is atomic and irreversible

    Attributes:
        frozen: Whether the registry is frozen (immutable)
        fingerprint: SHA-256 hash of the schema (computed on freeze)
        schema_validation: Whether documents are validated
    """

    def __init__(self, schema_validation: bool = True) -> None:
        self._tables: dict[str, TableDefinition] = {}
        self._schema_validation = schema_validation
        self._frozen = False
        self._fingerprint: str | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_schema(cls, schema: SchemaDefinition) -> SchemaRegistry:
        """Create a frozen registry holding every table of ``schema``."""
        registry = cls(schema_validation=schema.schema_validation)
        for name, table in schema.tables.items():
            registry.register_table(name, table)
        registry.freeze()
        return registry

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def fingerprint(self) -> str | None:
        return self._fingerprint

    @property
    def schema_validation(self) -> bool:
        return self._schema_validation

    def register_table(self, name: str, table: TableDefinition) -> None:
        """Register a table definition.

        Raises:
            RegistryFrozenError: If registry is frozen
            SchemaError: If the table is already registered or its name is invalid
        """
        # define_schema() owns the naming rules
        define_schema({name: table})
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError(
                    f"Cannot register table '{name}': registry is frozen", table=name
                )
            if name in self._tables:
                raise SchemaError(f"Table '{name}' already registered", table=name)
            self._tables[name] = table
            logger.debug(f"Registered table: {name} ({len(table.validator.fields)} fields)")

    def freeze(self) -> str:
        """Freeze the registry and compute its fingerprint.

        Raises:
            RegistryFrozenError: If already frozen
        """
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("Registry is already frozen")
            self._fingerprint = self._compute_fingerprint()
            self._frozen = True
            logger.info(
                f"Schema registry frozen with {len(self._tables)} tables, "
                f"fingerprint={self._fingerprint}"
            )
            return self._fingerprint

    def _compute_fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def get_table(self, name: str) -> TableDefinition:
        """Get a table definition.

        Raises:
            SchemaError: If the table is not declared
        """
        table = self._tables.get(name)
        if table is None:
            raise SchemaError(f"Table '{name}' is not defined in the schema", table=name)
        return table

    def table_names(self) -> Iterator[str]:
        yield from self._tables

    def validate_document(self, table: str, value: Any) -> dict[str, Any]:
        """Validate a full document (without system fields)."""
        definition = self.get_table(table)
        if not self._schema_validation:
            return dict(value)
        return definition.validator.validate(value)

    def validate_partial(self, table: str, value: Any) -> dict[str, Any]:
        """Validate the present fields of a partial document."""
        definition = self.get_table(table)
        if not self._schema_validation:
            return dict(value)
        return definition.validator.validate_partial(value)

    def to_schema(self) -> SchemaDefinition:
        return SchemaDefinition(tables=dict(self._tables), schema_validation=self._schema_validation)

    def to_dict(self) -> dict[str, Any]:
        return self.to_schema().to_dict()

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

"""
Schema definition types for DocBridge.

This module defines the declarative schema surface:
- IndexDef: Named index over one or more fields (metadata only)
- TableDefinition: Object validator plus indexes for one table
- SchemaDefinition: Immutable mapping of table name to definition

Invariants:
    - Table names are non-empty, contain no ":" and do not start with "_"
      (the "_" prefix is reserved for system tables)
    - Every document field of a table is declared by its object validator
    - Index fields must be declared fields or "_creationTime"
    - Definitions are immutable; index() returns a new TableDefinition

How to change safely:
    - Add new tables or optional fields freely
    - Making a field required invalidates existing documents lacking it

Example:
    >>> from docbridge.schema import define_schema, define_table, v
    >>> schema = define_schema({
    ...     "users": define_table({
    ...         "name": v.string(),
    ...         "email": v.optional(v.string()),
    ...     }).index("by_email", ["email"]),
    ... })
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from ..errors import SchemaError
from ..ids import SEPARATOR
from .validators import (
    ObjectValidator,
    Validator,
    as_object_validator,
    validator_from_dict,
)

SYSTEM_FIELDS = ("_id", "_creationTime")
SYSTEM_TABLE_PREFIX = "_"


def is_system_table(name: str) -> bool:
    return name.startswith(SYSTEM_TABLE_PREFIX)


@dataclass(frozen=True)
class IndexDef:
    """Named index over an ordered list of fields."""

    name: str
    fields: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fields": list(self.fields)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexDef:
        return cls(name=data["name"], fields=tuple(data["fields"]))


@dataclass(frozen=True)
class TableDefinition:
    """Field validator and indexes for a table.

    Attributes:
        validator: Closed object validator for document fields
        indexes: Declared indexes, in declaration order
    """

    validator: ObjectValidator
    indexes: tuple[IndexDef, ...] = ()

    def index(self, name: str, fields: Sequence[str]) -> TableDefinition:
        """Return a copy of this definition with an extra index."""
        if not name:
            raise SchemaError("Index name must not be empty")
        if any(existing.name == name for existing in self.indexes):
            raise SchemaError(f"Duplicate index '{name}'")
        if not fields:
            raise SchemaError(f"Index '{name}' must name at least one field")
        for field_name in fields:
            if field_name != "_creationTime" and field_name not in self.validator.fields:
                raise SchemaError(f"Index '{name}' references unknown field '{field_name}'")
        return replace(self, indexes=self.indexes + (IndexDef(name, tuple(fields)),))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fields": self.validator.to_dict()["fields"],
            "indexes": [idx.to_dict() for idx in self.indexes],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableDefinition:
        validator = validator_from_dict({"type": "object", "fields": data.get("fields", {})})
        table = cls(validator=validator)  # type: ignore[arg-type]
        for idx in data.get("indexes", []):
            table = table.index(idx["name"], idx["fields"])
        return table


def define_table(
    fields: ObjectValidator | Mapping[str, Validator] | None = None,
) -> TableDefinition:
    """Declare a table from its field validators."""
    validator = as_object_validator(fields)
    for name in validator.fields:
        if name in SYSTEM_FIELDS:
            raise SchemaError(f"Field '{name}' is a system field and cannot be declared")
    return TableDefinition(validator=validator)


@dataclass(frozen=True)
class SchemaDefinition:
    """Immutable set of table definitions.

    Attributes:
        tables: Table name to definition
        schema_validation: When False, writes and reads skip document validation
    """

    tables: Mapping[str, TableDefinition]
    schema_validation: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", MappingProxyType(dict(self.tables)))

    def __hash__(self) -> int:
        return hash((tuple(self.tables.items()), self.schema_validation))

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_validation": self.schema_validation,
            "tables": {name: table.to_dict() for name, table in sorted(self.tables.items())},
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaDefinition:
        tables = data.get("tables")
        if not isinstance(tables, dict):
            raise SchemaError("Schema document must contain a 'tables' mapping")
        return define_schema(
            {name: TableDefinition.from_dict(table or {}) for name, table in tables.items()},
            schema_validation=data.get("schema_validation", True),
        )


def define_schema(
    tables: Mapping[str, TableDefinition],
    schema_validation: bool = True,
) -> SchemaDefinition:
    """Build an immutable schema.

    Args:
        tables: Table name to definition
        schema_validation: Validate documents on write and read

    Raises:
        SchemaError: If a table name is reserved or malformed
    """
    for name, table in tables.items():
        if not name or SEPARATOR in name:
            raise SchemaError(f"Invalid table name {name!r}", table=name)
        if is_system_table(name):
            raise SchemaError(
                f"Table name '{name}' is reserved: names starting with "
                f"'{SYSTEM_TABLE_PREFIX}' are system tables",
                table=name,
            )
        if not isinstance(table, TableDefinition):
            raise SchemaError(f"Table '{name}' must be declared with define_table()", table=name)
    return SchemaDefinition(tables=tables, schema_validation=schema_validation)

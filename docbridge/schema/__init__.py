"""
Schema definition and validation for DocBridge.

Exports:
- v: Validator constructors (string, number, id, optional, object, ...)
- define_table, define_schema: Declarative schema surface
- SchemaRegistry: Frozen runtime form of a schema
- parse_yaml, parse_json, load_schema_file: Schema documents
"""

from .loader import load_schema_file, parse_json, parse_yaml
from .registry import RegistryFrozenError, SchemaRegistry
from .types import (
    SYSTEM_FIELDS,
    IndexDef,
    SchemaDefinition,
    TableDefinition,
    define_schema,
    define_table,
    is_system_table,
)
from .validators import ObjectValidator, Validator, validator_from_dict, v

__all__ = [
    "v",
    "Validator",
    "ObjectValidator",
    "validator_from_dict",
    "IndexDef",
    "TableDefinition",
    "SchemaDefinition",
    "SYSTEM_FIELDS",
    "define_table",
    "define_schema",
    "is_system_table",
    "SchemaRegistry",
    "RegistryFrozenError",
    "parse_yaml",
    "parse_json",
    "load_schema_file",
]

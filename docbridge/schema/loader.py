"""
Schema document loader.

Schemas may be written as YAML or JSON documents instead of Python code:

```yaml
schema_validation: true
tables:
  users:
    fields:
      name: string
      email: string?            # "?" suffix marks an optional field
      role: {type: picklist, values: [admin, member]}
      manager: {type: id, table: users}
    indexes:
      - name: by_email
        fields: [email]
```

Field descriptions use the validator to_dict() form; a bare type name is
shorthand for a primitive.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from ..errors import SchemaError
from .types import SchemaDefinition


def _expand_field(description: Any) -> Any:
    if isinstance(description, str) and description.endswith("?"):
        return {"type": "optional", "inner": _expand_field(description[:-1])}
    if isinstance(description, str):
        return {"type": description}
    if isinstance(description, dict):
        expanded = dict(description)
        for key in ("inner", "items", "keys", "values"):
            if key in expanded and not (key == "values" and expanded.get("type") == "picklist"):
                expanded[key] = _expand_field(expanded[key])
        if "fields" in expanded:
            expanded["fields"] = {
                name: _expand_field(item) for name, item in expanded["fields"].items()
            }
        if "members" in expanded:
            expanded["members"] = [_expand_field(item) for item in expanded["members"]]
        return expanded
    raise SchemaError(f"Invalid field description: {description!r}")


def parse_schema(data: dict[str, Any]) -> SchemaDefinition:
    """Parse a schema document already decoded to a dict."""
    if not isinstance(data, dict):
        raise SchemaError("Schema document must be a mapping")
    tables = data.get("tables") or {}
    if not isinstance(tables, dict):
        raise SchemaError("'tables' must be a mapping of table name to definition")

    expanded = {}
    for name, table in tables.items():
        table = table or {}
        expanded[name] = {
            "fields": {
                field_name: _expand_field(description)
                for field_name, description in (table.get("fields") or {}).items()
            },
            "indexes": table.get("indexes") or [],
        }
    return SchemaDefinition.from_dict(
        {"tables": expanded, "schema_validation": data.get("schema_validation", True)}
    )


def parse_yaml(yaml_str: str) -> SchemaDefinition:
    """Parse schema from YAML string."""
    try:
        data = yaml.safe_load(yaml_str)
    except yaml.YAMLError as e:
        raise SchemaError(f"Invalid YAML schema: {e}") from e
    return parse_schema(data or {})


def parse_json(json_str: str) -> SchemaDefinition:
    """Parse schema from JSON string."""
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON schema: {e}") from e
    return parse_schema(data or {})


def load_schema_file(path: str | Path) -> SchemaDefinition:
    """Load a schema from a .yaml/.yml or .json file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return parse_json(text)
    return parse_yaml(text)

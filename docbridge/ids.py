"""
Document identifier codec.

Identifiers are serialized as "<table>:<key>" where the key is assigned by
the store. The table prefix brands the identifier: an id can only be used
against the table it names.

Invariants:
    - decode_id(encode_id(t, k)) == (t, k) for t, k without ":"
    - Cross-table use fails here, before any store access
    - No escaping is performed; neither part may contain the separator
"""

from __future__ import annotations

from typing import Any

from .errors import InvalidIdentifier

SEPARATOR = ":"


class DocumentId(str):
    """A table-branded document identifier.

    Behaves as a plain string (it is stored and serialized as one) but
    exposes its table and key.

    Example:
        >>> doc_id = encode_id("users", "k1")
        >>> doc_id
        'users:k1'
        >>> doc_id.table, doc_id.key
        ('users', 'k1')
    """

    __slots__ = ()

    @property
    def table(self) -> str:
        return self.split(SEPARATOR, 1)[0]

    @property
    def key(self) -> str:
        return self.split(SEPARATOR, 1)[1]


def encode_id(table: str, key: str) -> DocumentId:
    """Build an identifier from a table name and a store key.

    Raises:
        InvalidIdentifier: If either part is empty or contains the separator
    """
    if not table or not key or SEPARATOR in table or SEPARATOR in key:
        raise InvalidIdentifier(
            f"Cannot encode identifier from table {table!r} and key {key!r}",
            identifier=f"{table}{SEPARATOR}{key}",
            expected_table=table,
        )
    return DocumentId(f"{table}{SEPARATOR}{key}")


def decode_id(value: Any) -> tuple[str, str]:
    """Split an identifier into (table, key).

    Raises:
        InvalidIdentifier: Unless the value has exactly two non-empty parts
    """
    if not isinstance(value, str):
        raise InvalidIdentifier(
            f"Invalid identifier: expected string but got {type(value).__name__}",
            identifier=value,
        )
    parts = value.split(SEPARATOR)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise InvalidIdentifier(
            f'Invalid identifier format: {value!r}. Expected "<table>{SEPARATOR}<key>"',
            identifier=value,
        )
    return parts[0], parts[1]


def parse_id(value: Any, table: str | None = None) -> DocumentId:
    """Decode and brand an identifier, optionally checking its table.

    Args:
        value: Raw identifier
        table: Table the identifier must belong to

    Raises:
        InvalidIdentifier: If malformed or it names a different table
    """
    id_table, _ = decode_id(value)
    if table is not None and id_table != table:
        raise InvalidIdentifier(
            f"Identifier {value!r} belongs to table '{id_table}', not '{table}'",
            identifier=value,
            expected_table=table,
        )
    return value if isinstance(value, DocumentId) else DocumentId(value)


def normalize_id(table: str, value: Any) -> DocumentId | None:
    """Return the identifier if it is well formed for ``table``, else None."""
    try:
        return parse_id(value, table)
    except InvalidIdentifier:
        return None

"""
Shared fixtures for DocBridge tests.
"""

import pytest

from docbridge.schema import define_schema, define_table, v
from docbridge.store import InMemoryDocumentStore


@pytest.fixture
def schema():
    """Schema used across the suite."""
    return define_schema(
        {
            "users": define_table(
                {
                    "name": v.string(),
                    "email": v.optional(v.string()),
                    "role": v.picklist("admin", "user"),
                    "age": v.optional(v.number()),
                }
            ).index("by_email", ["email"]),
            "accounts": define_table({"owner": v.string(), "balance": v.number()}),
            "messages": define_table(
                {
                    "author": v.id("users"),
                    "body": v.string(),
                    "tags": v.optional(v.array(v.string())),
                }
            ),
        }
    )


@pytest.fixture
async def store():
    """Connected in-memory store."""
    store = InMemoryDocumentStore()
    await store.connect()
    yield store
    await store.close()

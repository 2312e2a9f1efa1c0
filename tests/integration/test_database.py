"""
Integration tests for the database reader/writer.

Tests cover:
- Insert/get round trip and system fields
- Validation gate (no state change on invalid writes)
- Patch locality and field removal
- Replace and delete semantics
- Queries through the schema-aware reader
- Transactional writer overlay
- Table-scoped views
"""

import math
import os
import tempfile

import pytest

from docbridge.db import DatabaseWriter, TransactionalDatabaseWriter
from docbridge.errors import (
    InvalidIdentifier,
    MultipleResults,
    NotFoundError,
    QueryError,
    SchemaError,
    TransactionAborted,
    ValidationError,
)
from docbridge.schema import SchemaRegistry, define_schema, define_table, v
from docbridge.store import SqliteDocumentStore, StoreError


@pytest.fixture
def db(schema, store):
    return DatabaseWriter(schema, store)


class TestInsertAndGet:
    """Tests for insert and get."""

    @pytest.mark.asyncio
    async def test_insert_then_get(self, db):
        """Inserted documents come back with their id and role."""
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        user = await db.get(user_id)
        assert user["role"] == "admin"
        assert user["_id"] == user_id
        assert user_id.startswith("users:")

    @pytest.mark.asyncio
    async def test_system_fields(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        user = await db.get(user_id)
        assert list(user)[:2] == ["_id", "_creationTime"]
        assert isinstance(user["_creationTime"], float)

    @pytest.mark.asyncio
    async def test_creation_time_increases(self, db):
        first = await db.get(await db.insert("users", {"name": "A", "role": "user"}))
        second = await db.get(await db.insert("users", {"name": "B", "role": "user"}))
        assert second["_creationTime"] > first["_creationTime"]

    @pytest.mark.asyncio
    async def test_system_fields_in_value_are_ignored(self, db):
        user_id = await db.insert(
            "users", {"name": "A", "role": "user", "_id": "users:forged", "_creationTime": 1.0}
        )
        user = await db.get(user_id)
        assert user["_id"] == user_id
        assert user["_creationTime"] != 1.0

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, db):
        assert await db.get("users:doesnotexist") is None

    @pytest.mark.asyncio
    async def test_get_malformed_id(self, db, store):
        with pytest.raises(InvalidIdentifier):
            await db.get("not-an-id")

    @pytest.mark.asyncio
    async def test_get_unknown_table_id(self, db):
        with pytest.raises(InvalidIdentifier, match="unknown table"):
            await db.get("orders:k1")

    @pytest.mark.asyncio
    async def test_insert_unknown_table(self, db):
        with pytest.raises(SchemaError):
            await db.insert("orders", {"total": 1})

    @pytest.mark.asyncio
    async def test_system_table_is_read_only(self, db):
        with pytest.raises(SchemaError, match="read-only"):
            await db.insert("_scheduled_functions", {"name": "x"})
        with pytest.raises(SchemaError):
            db.query("_storage")

    @pytest.mark.asyncio
    async def test_id_field_must_name_table(self, db):
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        message_id = await db.insert("messages", {"author": user_id, "body": "hi"})
        with pytest.raises(ValidationError):
            await db.insert("messages", {"author": message_id, "body": "hi"})

    @pytest.mark.asyncio
    async def test_accepts_frozen_registry(self, schema, store):
        db = DatabaseWriter(SchemaRegistry.from_schema(schema), store)
        assert await db.get(await db.insert("accounts", {"owner": "a", "balance": 0}))

    def test_rejects_unfrozen_registry(self, store):
        with pytest.raises(SchemaError, match="frozen"):
            DatabaseWriter(SchemaRegistry(), store)


class TestValidationGate:
    """Invalid writes are rejected before any store change."""

    @pytest.mark.asyncio
    async def test_invalid_insert(self, db, store):
        with pytest.raises(ValidationError) as exc_info:
            await db.insert("users", {"name": "Alice", "role": "superuser"})
        assert exc_info.value.path == ("role",)
        assert store.document_count("users") == 0

    @pytest.mark.asyncio
    async def test_unknown_field(self, db, store):
        with pytest.raises(ValidationError, match="Unknown field 'nickname'"):
            await db.insert("users", {"name": "A", "role": "user", "nickname": "a"})
        assert store.document_count("users") == 0

    @pytest.mark.asyncio
    async def test_invalid_replace(self, db, store):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        before = store.dump("users")
        with pytest.raises(ValidationError):
            await db.replace(user_id, {"name": 42, "role": "admin"})
        assert store.dump("users") == before

    @pytest.mark.asyncio
    async def test_not_an_object(self, db):
        with pytest.raises(ValidationError):
            await db.insert("users", ["Alice"])


class TestPatch:
    """Tests for patch."""

    @pytest.mark.asyncio
    async def test_patch_changes_only_given_field(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin", "age": 30})
        before = await db.get(user_id)
        await db.patch(user_id, {"role": "user"})
        after = await db.get(user_id)
        assert after == {**before, "role": "user"}

    @pytest.mark.asyncio
    async def test_patch_none_removes_optional_field(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin", "email": "a@x"})
        await db.patch(user_id, {"email": None})
        assert "email" not in await db.get(user_id)

    @pytest.mark.asyncio
    async def test_patch_none_on_required_field(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        with pytest.raises(ValidationError):
            await db.patch(user_id, {"name": None})

    @pytest.mark.asyncio
    async def test_patch_invalid_value(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        with pytest.raises(ValidationError):
            await db.patch(user_id, {"age": "old"})
        assert "age" not in await db.get(user_id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["_id", "_creationTime"])
    async def test_patch_system_field(self, db, field):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        with pytest.raises(ValidationError, match="System field"):
            await db.patch(user_id, {field: "x"})

    @pytest.mark.asyncio
    async def test_patch_missing(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            await db.patch("users:missing", {"role": "user"})
        assert exc_info.value.code == "NOT_FOUND"


class TestReplaceAndDelete:
    """Tests for replace and delete."""

    @pytest.mark.asyncio
    async def test_replace_keeps_creation_time(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin", "age": 30})
        before = await db.get(user_id)
        await db.replace(user_id, {"name": "Alicia", "role": "user"})
        after = await db.get(user_id)
        assert after == {
            "_id": user_id,
            "_creationTime": before["_creationTime"],
            "name": "Alicia",
            "role": "user",
        }

    @pytest.mark.asyncio
    async def test_replace_with_document_from_get(self, db):
        user_id = await db.insert("users", {"name": "Alice", "role": "admin"})
        user = await db.get(user_id)
        await db.replace(user_id, {**user, "role": "user"})
        assert (await db.get(user_id))["role"] == "user"

    @pytest.mark.asyncio
    async def test_replace_mismatched_id(self, db):
        first = await db.insert("users", {"name": "A", "role": "user"})
        second = await db.insert("users", {"name": "B", "role": "user"})
        with pytest.raises(InvalidIdentifier):
            await db.replace(first, {"_id": second, "name": "C", "role": "user"})

    @pytest.mark.asyncio
    async def test_replace_missing(self, db):
        with pytest.raises(NotFoundError):
            await db.replace("users:missing", {"name": "A", "role": "user"})

    @pytest.mark.asyncio
    async def test_delete(self, db):
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        await db.delete(user_id)
        assert await db.get(user_id) is None

    @pytest.mark.asyncio
    async def test_delete_twice(self, db):
        """Deleting a missing document raises NotFoundError."""
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        await db.delete(user_id)
        with pytest.raises(NotFoundError):
            await db.delete(user_id)


class TestQueries:
    """Tests for queries through the database."""

    @pytest.fixture
    async def seeded(self, db):
        for name, role, age in [
            ("Dave", "user", 40),
            ("Alice", "admin", 30),
            ("Carol", "user", 25),
            ("Bob", "user", 35),
        ]:
            await db.insert("users", {"name": name, "role": role, "age": age})
        return db

    @pytest.mark.asyncio
    async def test_where_order_limit(self, seeded):
        users = await seeded.query("users").where("role", "==", "user").order("name").limit(2).collect()
        assert len(users) <= 2
        assert all(user["role"] == "user" for user in users)
        assert [user["name"] for user in users] == ["Bob", "Carol"]

    @pytest.mark.asyncio
    async def test_default_order_is_insertion(self, seeded):
        users = await seeded.query("users").collect()
        assert [user["name"] for user in users] == ["Dave", "Alice", "Carol", "Bob"]

    @pytest.mark.asyncio
    async def test_order_by_creation_time_desc(self, seeded):
        users = await seeded.query("users").order("_creationTime", "desc").take(1)
        assert users[0]["name"] == "Bob"

    @pytest.mark.asyncio
    async def test_range_filter(self, seeded):
        users = await seeded.query("users").where("age", ">=", 35).order("age").collect()
        assert [user["name"] for user in users] == ["Bob", "Dave"]

    @pytest.mark.asyncio
    async def test_unique(self, seeded):
        admin = await seeded.query("users").where("role", "==", "admin").unique()
        assert admin["name"] == "Alice"
        assert await seeded.query("users").where("name", "==", "Zed").unique() is None
        with pytest.raises(MultipleResults):
            await seeded.query("users").where("role", "==", "user").unique()

    @pytest.mark.asyncio
    async def test_multiple_results_is_query_error(self, seeded):
        with pytest.raises(QueryError):
            await seeded.query("users").unique()

    @pytest.mark.asyncio
    async def test_first(self, seeded):
        first = await seeded.query("users").order("name").first()
        assert first["name"] == "Alice"

    @pytest.mark.asyncio
    async def test_iteration(self, seeded):
        names = [user["name"] async for user in seeded.query("users").where("age", "<", 30)]
        assert names == ["Carol"]

    @pytest.mark.asyncio
    async def test_unknown_table(self, db):
        with pytest.raises(SchemaError):
            db.query("orders")

    @pytest.mark.asyncio
    async def test_stored_document_failing_schema(self, db, store):
        """Documents that no longer validate are not returned silently."""
        await store.write("users", "legacy", {"name": "Old", "role": "guest", "_creationTime": 1.0})
        with pytest.raises(ValidationError):
            await db.get("users:legacy")

    @pytest.mark.asyncio
    async def test_normalize_id(self, db):
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        assert db.normalize_id("users", user_id) == user_id
        assert db.normalize_id("messages", user_id) is None
        assert db.normalize_id("users", "bogus") is None


class TestTableScopes:
    """Tests for db.table(name)."""

    @pytest.mark.asyncio
    async def test_table_writer(self, db):
        users = db.table("users")
        user_id = await users.insert({"name": "A", "role": "user"})
        await users.patch(user_id, {"age": 20})
        assert (await users.get(user_id))["age"] == 20
        assert len(await users.query().collect()) == 1
        await users.delete(user_id)
        assert await users.get(user_id) is None

    @pytest.mark.asyncio
    async def test_table_rejects_other_ids(self, db):
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        with pytest.raises(InvalidIdentifier):
            await db.table("messages").get(user_id)
        with pytest.raises(InvalidIdentifier):
            await db.table("accounts").delete(user_id)
        assert await db.get(user_id) is not None

    def test_unknown_table(self, db):
        with pytest.raises(SchemaError):
            db.table("orders")


class TestTransactionalWriter:
    """Tests for TransactionalDatabaseWriter."""

    @pytest.fixture
    async def tx_db(self, schema, store):
        tx = await store.begin()
        return TransactionalDatabaseWriter(schema, store, tx, function_name="test")

    @pytest.mark.asyncio
    async def test_writes_invisible_until_commit(self, tx_db, db):
        user_id = await tx_db.insert("users", {"name": "A", "role": "user"})
        assert await db.get(user_id) is None
        await tx_db.commit()
        assert (await db.get(user_id))["name"] == "A"

    @pytest.mark.asyncio
    async def test_patch_own_insert(self, tx_db, db):
        """Existence checks see writes queued earlier in the transaction."""
        user_id = await tx_db.insert("users", {"name": "A", "role": "user"})
        await tx_db.patch(user_id, {"age": 3})
        await tx_db.commit()
        user = await db.get(user_id)
        assert user["age"] == 3
        assert user["name"] == "A"

    @pytest.mark.asyncio
    async def test_delete_own_insert(self, tx_db, store):
        user_id = await tx_db.insert("users", {"name": "A", "role": "user"})
        await tx_db.delete(user_id)
        with pytest.raises(NotFoundError):
            await tx_db.patch(user_id, {"age": 3})
        await tx_db.commit()
        assert store.document_count("users") == 0

    @pytest.mark.asyncio
    async def test_reads_use_snapshot(self, tx_db, db):
        user_id = await db.insert("users", {"name": "A", "role": "user"})
        assert await tx_db.get(user_id) is None
        await tx_db.rollback()

    @pytest.mark.asyncio
    async def test_rollback(self, tx_db, store):
        await tx_db.insert("users", {"name": "A", "role": "user"})
        await tx_db.rollback()
        await tx_db.rollback()
        assert store.document_count("users") == 0

    @pytest.mark.asyncio
    async def test_closed_writer(self, tx_db):
        await tx_db.commit()
        with pytest.raises(TransactionAborted):
            await tx_db.insert("users", {"name": "A", "role": "user"})
        with pytest.raises(TransactionAborted):
            tx_db.query("users")
        with pytest.raises(TransactionAborted):
            await tx_db.reader().get("users:k")

    @pytest.mark.asyncio
    async def test_reader_has_no_write_methods(self, tx_db):
        reader = tx_db.reader()
        assert not hasattr(reader, "insert")
        assert await reader.query("users").collect() == []
        await tx_db.rollback()


class TestSqliteBackedDatabase:
    """The database layer behaves the same on the SQLite store."""

    @pytest.fixture
    async def sqlite_db(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = SqliteDocumentStore(os.path.join(tmpdir, "app.db"))
            await store.connect()
            schema = define_schema(
                {
                    "users": define_table(
                        {
                            "name": v.string(),
                            "role": v.string(),
                            "email": v.optional(v.string()),
                            "score": v.optional(v.number()),
                        }
                    )
                }
            )
            yield DatabaseWriter(schema, store)
            await store.close()

    @pytest.mark.asyncio
    async def test_round_trip_and_query(self, sqlite_db):
        alice = await sqlite_db.insert("users", {"name": "Alice", "role": "admin", "email": "a@x"})
        await sqlite_db.insert("users", {"name": "Carol", "role": "user"})
        await sqlite_db.insert("users", {"name": "Bob", "role": "user"})

        assert (await sqlite_db.get(alice))["role"] == "admin"
        users = await sqlite_db.query("users").where("role", "==", "user").order("name").limit(2).collect()
        assert [user["name"] for user in users] == ["Bob", "Carol"]

        await sqlite_db.patch(alice, {"email": None})
        assert "email" not in await sqlite_db.get(alice)
        await sqlite_db.delete(alice)
        assert await sqlite_db.get(alice) is None

    @pytest.mark.asyncio
    async def test_non_finite_number_leaves_table_queryable(self, sqlite_db):
        await sqlite_db.insert("users", {"name": "Alice", "role": "admin", "score": 1.5})
        with pytest.raises(StoreError):
            await sqlite_db.insert("users", {"name": "Bob", "role": "user", "score": math.nan})

        users = await sqlite_db.query("users").where("role", "==", "admin").collect()
        assert [user["name"] for user in users] == ["Alice"]
        assert await sqlite_db.query("users").where("score", "==", 2**70).collect() == []

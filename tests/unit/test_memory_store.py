"""
Unit tests for the in-memory document store.

Tests cover:
- Direct reads and writes
- Filter matching semantics
- Ordering and limits
- Snapshot transactions and write conflicts
"""

import pytest

from docbridge.store import (
    DELETE_FIELD,
    FieldFilter,
    FilterOp,
    InMemoryDocumentStore,
    SortDirection,
    SortKey,
    StoreConflictError,
    StoreConnectionError,
    StoreError,
)
from docbridge.store.memory import matches


def flt(field, op, value):
    return FieldFilter(field=field, op=FilterOp(op), value=value)


class TestMatching:
    """Tests for filter matching."""

    def test_missing_field_never_matches(self):
        doc = {"name": "A"}
        assert not matches(doc, flt("age", "==", None))
        assert not matches(doc, flt("age", "!=", 3))
        assert not matches(doc, flt("age", "not-in", [1, 2]))

    def test_equality_is_type_strict(self):
        assert matches({"flag": True}, flt("flag", "==", True))
        assert not matches({"flag": True}, flt("flag", "==", 1))
        assert not matches({"n": 1}, flt("n", "==", "1"))
        assert matches({"n": 1}, flt("n", "==", 1.0))

    def test_null_equality(self):
        assert matches({"v": None}, flt("v", "==", None))
        assert not matches({"v": 0}, flt("v", "==", None))

    def test_range_same_type_only(self):
        assert matches({"age": 30}, flt("age", ">", 18))
        assert not matches({"age": "30"}, flt("age", ">", 18))
        assert matches({"name": "bob"}, flt("name", ">=", "alice"))
        assert not matches({"v": None}, flt("v", "<", 1))

    def test_in_and_not_in(self):
        assert matches({"role": "admin"}, flt("role", "in", ["admin", "user"]))
        assert not matches({"role": "guest"}, flt("role", "in", ["admin", "user"]))
        assert matches({"role": "guest"}, flt("role", "not-in", ["admin", "user"]))

    def test_array_contains(self):
        doc = {"tags": ["a", "b"]}
        assert matches(doc, flt("tags", "array-contains", "a"))
        assert not matches(doc, flt("tags", "array-contains", "c"))
        assert matches(doc, flt("tags", "array-contains-any", ["c", "b"]))
        assert not matches({"tags": "a"}, flt("tags", "array-contains", "a"))

    def test_dotted_path(self):
        doc = {"profile": {"city": "Oslo"}}
        assert matches(doc, flt("profile.city", "==", "Oslo"))
        assert not matches(doc, flt("profile.zip", "==", "0150"))

    def test_object_equality(self):
        assert matches({"p": {"a": 1, "b": 2}}, flt("p", "==", {"b": 2, "a": 1}))


class TestInMemoryStore:
    """Tests for direct store operations."""

    @pytest.mark.asyncio
    async def test_requires_connect(self):
        store = InMemoryDocumentStore()
        with pytest.raises(StoreConnectionError):
            await store.read("users", "k")

    @pytest.mark.asyncio
    async def test_write_read(self, store):
        key = await store.new_key("users")
        await store.write("users", key, {"name": "A"})
        assert await store.read("users", key) == {"name": "A"}
        assert await store.read("users", "missing") is None

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store):
        await store.write("users", "k", {"tags": ["a"]})
        doc = await store.read("users", "k")
        doc["tags"].append("b")
        assert await store.read("users", "k") == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_update_and_delete_field(self, store):
        await store.write("users", "k", {"name": "A", "email": "a@x"})
        await store.update("users", "k", {"name": "B", "email": DELETE_FIELD})
        assert await store.read("users", "k") == {"name": "B"}

    @pytest.mark.asyncio
    async def test_update_missing(self, store):
        with pytest.raises(StoreError):
            await store.update("users", "nope", {"name": "B"})

    @pytest.mark.asyncio
    async def test_remove(self, store):
        await store.write("users", "k", {"name": "A"})
        await store.remove("users", "k")
        assert await store.read("users", "k") is None
        assert store.document_count("users") == 0

    @pytest.mark.asyncio
    async def test_new_keys_are_unique(self, store):
        keys = {await store.new_key("users") for _ in range(50)}
        assert len(keys) == 50

    @pytest.mark.asyncio
    async def test_query_insertion_order(self, store):
        for key in ("c", "a", "b"):
            await store.write("users", key, {"name": key})
        results = await store.query("users")
        assert [doc.key for doc in results] == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_query_order_and_limit(self, store):
        await store.write("users", "1", {"name": "B", "age": 30})
        await store.write("users", "2", {"name": "A", "age": 30})
        await store.write("users", "3", {"name": "C", "age": 20})
        await store.write("users", "4", {"name": "D"})

        results = await store.query(
            "users",
            order=(SortKey("age", SortDirection.DESC), SortKey("name")),
        )
        # Documents without "age" are excluded by the ordering
        assert [doc.data["name"] for doc in results] == ["A", "B", "C"]

        limited = await store.query("users", order=(SortKey("name"),), limit=2)
        assert [doc.data["name"] for doc in limited] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_order_ties_keep_insertion_order(self, store):
        await store.write("users", "x", {"role": "user"})
        await store.write("users", "y", {"role": "user"})
        results = await store.query("users", order=(SortKey("role"),))
        assert [doc.key for doc in results] == ["x", "y"]

    @pytest.mark.asyncio
    async def test_close_clears_data(self, store):
        await store.write("users", "k", {"name": "A"})
        await store.close()
        await store.connect()
        assert await store.read("users", "k") is None


class TestInMemoryTransactions:
    """Tests for snapshot transactions."""

    @pytest.mark.asyncio
    async def test_writes_invisible_until_commit(self, store):
        tx = await store.begin()
        await tx.write("users", "k", {"name": "A"})
        assert await store.read("users", "k") is None
        await tx.commit()
        assert await store.read("users", "k") == {"name": "A"}
        assert store.commit_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_reads(self, store):
        await store.write("users", "k", {"name": "A"})
        tx = await store.begin()
        await store.write("users", "other", {"name": "B"})
        assert await tx.read("users", "other") is None
        assert [doc.key for doc in await tx.query("users")] == ["k"]
        await tx.rollback()

    @pytest.mark.asyncio
    async def test_no_read_your_writes(self, store):
        assert store.read_your_writes is False
        tx = await store.begin()
        await tx.write("users", "k", {"name": "A"})
        assert await tx.read("users", "k") is None
        await tx.rollback()

    @pytest.mark.asyncio
    async def test_rollback_discards(self, store):
        tx = await store.begin()
        await tx.write("users", "k", {"name": "A"})
        await tx.rollback()
        assert not tx.is_open
        assert await store.read("users", "k") is None
        with pytest.raises(StoreError):
            await tx.write("users", "k2", {"name": "B"})

    @pytest.mark.asyncio
    async def test_conflict_on_read_document(self, store):
        await store.write("accounts", "a", {"balance": 10})
        tx = await store.begin()
        await tx.read("accounts", "a")
        await store.update("accounts", "a", {"balance": 5})
        await tx.update("accounts", "a", {"balance": 20})
        with pytest.raises(StoreConflictError):
            await tx.commit()
        assert await store.read("accounts", "a") == {"balance": 5}

    @pytest.mark.asyncio
    async def test_concurrent_transactions_one_wins(self, store):
        await store.write("accounts", "a", {"balance": 10})
        first = await store.begin()
        second = await store.begin()
        await first.read("accounts", "a")
        await second.read("accounts", "a")
        await first.update("accounts", "a", {"balance": 9})
        await second.update("accounts", "a", {"balance": 8})

        await first.commit()
        with pytest.raises(StoreConflictError):
            await second.commit()
        assert await store.read("accounts", "a") == {"balance": 9}

    @pytest.mark.asyncio
    async def test_disjoint_transactions_both_commit(self, store):
        first = await store.begin()
        second = await store.begin()
        await first.write("users", "a", {"name": "A"})
        await second.write("users", "b", {"name": "B"})
        await first.commit()
        await second.commit()
        assert store.document_count("users") == 2

    @pytest.mark.asyncio
    async def test_commit_is_atomic(self, store):
        """A failing op in the batch leaves the store untouched."""
        tx = await store.begin()
        await tx.write("users", "a", {"name": "A"})
        await tx.update("users", "missing", {"name": "B"})
        with pytest.raises(StoreError):
            await tx.commit()
        assert await store.read("users", "a") is None

    @pytest.mark.asyncio
    async def test_injected_commit_failure(self, store):
        store.fail_next_commit()
        tx = await store.begin()
        await tx.write("users", "a", {"name": "A"})
        with pytest.raises(StoreError, match="Injected"):
            await tx.commit()
        assert await store.read("users", "a") is None

        tx = await store.begin()
        await tx.write("users", "a", {"name": "A"})
        await tx.commit()
        assert await store.read("users", "a") == {"name": "A"}

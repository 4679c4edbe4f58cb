"""
In-memory store transaction tests
"""
import pytest

from services.errors import ConflictError
from services.store import MemoryStore, run_with_retry


@pytest.fixture
def memory_store():
    return MemoryStore()


async def insert(store, collection, doc):
    tx = store.transaction()
    tx.insert(collection, doc)
    await tx.commit()


class TestTransactions:
    async def test_insert_sets_initial_version(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1", "quantity": 5})
        doc = await memory_store.find_one("orders", {"order_id": "ord_1"})
        assert doc["version"] == 1

    async def test_update_bumps_version(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1", "quantity": 5})
        tx = memory_store.transaction()
        tx.update("orders", {"order_id": "ord_1"}, 1, {"quantity": 6})
        await tx.commit()
        doc = await memory_store.find_one("orders", {"order_id": "ord_1"})
        assert doc["quantity"] == 6
        assert doc["version"] == 2

    async def test_stale_version_conflicts(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1", "quantity": 5})
        tx = memory_store.transaction()
        tx.update("orders", {"order_id": "ord_1"}, 7, {"quantity": 6})
        with pytest.raises(ConflictError):
            await tx.commit()

    async def test_failed_commit_writes_nothing(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1", "quantity": 5})
        tx = memory_store.transaction()
        tx.insert("audit_log", {"audit_id": "audit_1"})
        tx.update("orders", {"order_id": "ord_1"}, 1, {"quantity": 6})
        tx.update("orders", {"order_id": "ord_1"}, 1, {"quantity": 7})  # stale after the first update
        with pytest.raises(ConflictError):
            await tx.commit()

        assert await memory_store.find_one("audit_log", {"audit_id": "audit_1"}) is None
        doc = await memory_store.find_one("orders", {"order_id": "ord_1"})
        assert doc["quantity"] == 5
        assert doc["version"] == 1

    async def test_duplicate_key_conflicts(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1"})
        with pytest.raises(ConflictError):
            await insert(memory_store, "orders", {"order_id": "ord_1"})

    async def test_reads_are_copies(self, memory_store):
        await insert(memory_store, "orders", {"order_id": "ord_1", "tags": ["a"]})
        doc = await memory_store.find_one("orders", {"order_id": "ord_1"})
        doc["tags"].append("b")
        again = await memory_store.find_one("orders", {"order_id": "ord_1"})
        assert again["tags"] == ["a"]


class TestQueries:
    async def test_operators_and_sort(self, memory_store):
        for i in range(5):
            await insert(memory_store, "capacity_logs", {"log_id": f"log_{i}", "delta": i})
        docs = await memory_store.find(
            "capacity_logs", {"delta": {"$gte": 1, "$lt": 4}}, sort=[("delta", -1)]
        )
        assert [d["delta"] for d in docs] == [3, 2, 1]

        docs = await memory_store.find("capacity_logs", {"log_id": {"$in": ["log_0", "log_4"]}})
        assert len(docs) == 2

        docs = await memory_store.find("capacity_logs", {}, sort=[("delta", 1)], limit=2)
        assert [d["delta"] for d in docs] == [0, 1]


class TestRetry:
    async def test_retries_conflicts_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConflictError("lost the race")
            return "done"

        assert await run_with_retry(flaky, 3, "flaky") == "done"
        assert len(calls) == 3

    async def test_surfaces_conflict_after_last_attempt(self):
        async def always_conflicts():
            raise ConflictError("lost the race")

        with pytest.raises(ConflictError):
            await run_with_retry(always_conflicts, 2, "always_conflicts")

"""
Document store with optimistic-concurrency transactions

Every document carries an integer `version`. A Transaction collects inserts,
compare-and-set updates and deletes, and the store applies all of them or none:
an update whose expected version no longer matches (or an insert whose key is
already taken) raises ConflictError and nothing is written.

MongoStore runs the ops inside a MongoDB multi-document transaction (replica set
required). MemoryStore serialises commits under an asyncio.Lock and is used for
tests and for STORE_BACKEND=memory.
"""
import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from pymongo.errors import DuplicateKeyError, OperationFailure

from services.errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Unique business key per collection (also used to build MongoDB indexes)
COLLECTION_KEYS = {
    "orders": "order_id",
    "supplier_orders": "supplier_order_id",
    "suppliers": "supplier_id",
    "factory_capacity": "capacity_id",
    "capacity_logs": "log_id",
    "production_stages": "stage_id",
    "production_stage_templates": "template_id",
    "production_batches": "batch_id",
    "batch_contributions": "contribution_id",
    "payment_events": "payment_event_id",
    "audit_log": "audit_id",
    "notifications": "notification_id",
    "sync_queue": "submission_id",
    "users": "user_id",
    "user_sessions": "session_token",
}


class Transaction:
    """Collects write operations for a single all-or-nothing commit"""

    def __init__(self, store: "Store"):
        self._store = store
        self.ops: List[Tuple[str, str, Dict[str, Any], Optional[int], Dict[str, Any]]] = []

    def insert(self, collection: str, doc: Dict[str, Any]):
        doc = copy.deepcopy(doc)
        doc.setdefault("version", 1)
        self.ops.append(("insert", collection, doc, None, {}))

    def update(self, collection: str, key: Dict[str, Any], expected_version: int, changes: Dict[str, Any]):
        """Compare-and-set: applies `changes` only if the stored version is still `expected_version`"""
        changes = copy.deepcopy(changes)
        changes.pop("version", None)
        self.ops.append(("update", collection, dict(key), expected_version, changes))

    def delete(self, collection: str, key: Dict[str, Any], expected_version: Optional[int] = None):
        self.ops.append(("delete", collection, dict(key), expected_version, {}))

    async def commit(self):
        if not self.ops:
            return
        await self._store.apply(self.ops)


class Store:
    """Read API plus transaction factory shared by both backends"""

    async def find_one(self, collection: str, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def find(
        self,
        collection: str,
        query: Optional[Dict[str, Any]] = None,
        sort: Optional[List[Tuple[str, int]]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def apply(self, ops):
        raise NotImplementedError

    def transaction(self) -> Transaction:
        return Transaction(self)


def _matches(doc: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for field, expected in query.items():
        value = doc.get(field)
        if isinstance(expected, dict):
            for op, operand in expected.items():
                if op == "$in" and value not in operand:
                    return False
                if op == "$nin" and value in operand:
                    return False
                if op == "$ne" and value == operand:
                    return False
                if op == "$lt" and not (value is not None and value < operand):
                    return False
                if op == "$lte" and not (value is not None and value <= operand):
                    return False
                if op == "$gt" and not (value is not None and value > operand):
                    return False
                if op == "$gte" and not (value is not None and value >= operand):
                    return False
        elif value != expected:
            return False
    return True


class MemoryStore(Store):
    """In-process store; commits are serialised so each transaction is atomic"""

    def __init__(self):
        self._collections: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def find_one(self, collection, query):
        # Yield so concurrent readers interleave the way they would against a real database
        await asyncio.sleep(0)
        for doc in self._collections[collection]:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def find(self, collection, query=None, sort=None, limit=None):
        await asyncio.sleep(0)
        docs = [copy.deepcopy(d) for d in self._collections[collection] if _matches(d, query or {})]
        for field, direction in reversed(sort or []):
            docs.sort(key=lambda d: (d.get(field) is None, d.get(field)), reverse=direction < 0)
        if limit:
            docs = docs[:limit]
        return docs

    async def apply(self, ops):
        async with self._lock:
            staged: Dict[str, List[Dict[str, Any]]] = {}
            for kind, collection, payload, expected_version, changes in ops:
                if collection not in staged:
                    staged[collection] = list(self._collections[collection])
                docs = staged[collection]

                if kind == "insert":
                    key_field = COLLECTION_KEYS.get(collection)
                    if key_field and any(d.get(key_field) == payload.get(key_field) for d in docs):
                        raise ConflictError(f"Duplicate {key_field} {payload.get(key_field)} in {collection}")
                    docs.append(payload)
                    continue

                index = next((i for i, d in enumerate(docs) if _matches(d, payload)), None)
                if index is None:
                    raise ConflictError(f"No document in {collection} matching {payload}")
                current = docs[index]
                if expected_version is not None and current.get("version") != expected_version:
                    raise ConflictError(
                        f"Version mismatch in {collection} for {payload}: "
                        f"expected {expected_version}, found {current.get('version')}"
                    )
                if kind == "delete":
                    docs.pop(index)
                else:
                    updated = {**current, **changes, "version": current.get("version", 0) + 1}
                    docs[index] = updated

            for collection, docs in staged.items():
                self._collections[collection] = docs

    def clear(self):
        self._collections.clear()


class MongoStore(Store):
    """Motor-backed store; each commit is a multi-document transaction"""

    def __init__(self, client, db):
        self.client = client
        self.db = db

    async def find_one(self, collection, query):
        return await self.db[collection].find_one(query, {"_id": 0})

    async def find(self, collection, query=None, sort=None, limit=None):
        cursor = self.db[collection].find(query or {}, {"_id": 0})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(limit)

    async def apply(self, ops):
        async with await self.client.start_session() as session:
            try:
                async with session.start_transaction():
                    for kind, collection, payload, expected_version, changes in ops:
                        coll = self.db[collection]
                        if kind == "insert":
                            await coll.insert_one(dict(payload), session=session)
                            continue

                        query = dict(payload)
                        if expected_version is not None:
                            query["version"] = expected_version
                        if kind == "delete":
                            result = await coll.delete_one(query, session=session)
                            if result.deleted_count == 0:
                                raise ConflictError(f"No document in {collection} matching {payload}")
                        else:
                            update = {"$inc": {"version": 1}}
                            if changes:
                                update["$set"] = changes
                            result = await coll.update_one(query, update, session=session)
                            if result.matched_count == 0:
                                raise ConflictError(
                                    f"Version mismatch in {collection} for {payload} (expected {expected_version})"
                                )
            except DuplicateKeyError as e:
                raise ConflictError(f"Duplicate key: {e}")
            except OperationFailure as e:
                if e.has_error_label("TransientTransactionError"):
                    raise ConflictError(f"Transient transaction error: {e}")
                raise


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    description: str = "operation",
) -> T:
    """Re-run `operation` from a fresh read when its commit loses an optimistic-concurrency race"""
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConflictError as e:
            if attempt >= attempts:
                logger.warning(f"{description} failed after {attempts} attempts: {e.message}")
                raise
            logger.info(f"{description} conflict on attempt {attempt}, retrying: {e.message}")
    raise ConflictError(f"{description} was not attempted")

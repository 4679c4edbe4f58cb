from motor.motor_asyncio import AsyncIOMotorClient
from config import MONGO_URL, DB_NAME, STORE_BACKEND
from services.store import COLLECTION_KEYS, MemoryStore, MongoStore
import os

# Check if training mode is enabled
TRAINING_MODE = os.environ.get("TRAINING_MODE", "false").lower() == "true"

# Use separate database for training
if TRAINING_MODE:
    ACTIVE_DB_NAME = f"{DB_NAME}_training"
else:
    ACTIVE_DB_NAME = DB_NAME

client = AsyncIOMotorClient(MONGO_URL)
db = client[ACTIVE_DB_NAME]

# Process-wide store used by the domain services
if STORE_BACKEND == "memory":
    store = MemoryStore()
else:
    store = MongoStore(client, db)

# Log which database is being used
print(f"[Database] Using {STORE_BACKEND} store on {ACTIVE_DB_NAME} {'(TRAINING MODE)' if TRAINING_MODE else '(PRODUCTION)'}")


async def create_indexes():
    """Create database indexes for optimized query performance"""
    if STORE_BACKEND == "memory":
        return
    try:
        # Unique business keys
        for collection, key in COLLECTION_KEYS.items():
            await db[collection].create_index(key, unique=True)

        # orders indexes
        await db.orders.create_index("buyer_id")
        await db.orders.create_index("workflow_status")
        await db.orders.create_index("batch_id")
        await db.orders.create_index("created_at")

        # supplier_orders indexes
        await db.supplier_orders.create_index("supplier_id")
        await db.supplier_orders.create_index("order_id")
        await db.supplier_orders.create_index("batch_id")
        await db.supplier_orders.create_index("acceptance_status")

        # factory_capacity indexes
        await db.factory_capacity.create_index([("supplier_id", 1), ("date", 1)], unique=True)
        await db.factory_capacity.create_index("date")
        await db.capacity_logs.create_index([("supplier_id", 1), ("date", -1)])

        # production indexes
        await db.production_stages.create_index([("supplier_order_id", 1), ("stage_number", 1)], unique=True)
        await db.production_stage_templates.create_index([("product_category", 1), ("stage_number", 1)])
        await db.production_batches.create_index([("status", 1), ("product_category", 1)])
        await db.batch_contributions.create_index("batch_id")
        await db.batch_contributions.create_index("order_id", unique=True)

        # audit / queue indexes
        await db.audit_log.create_index([("entity_type", 1), ("entity_id", 1), ("created_at", 1)])
        await db.notifications.create_index([("user_id", 1), ("created_at", -1)])
        await db.sync_queue.create_index([("status", 1), ("next_attempt_at", 1)])

        print("[Database] Indexes created successfully")
    except Exception as e:
        print(f"[Database] Index creation error (may already exist): {e}")

"""
In-app notifications
Subscribes to domain events and stores notification documents for the
buyers and suppliers concerned. Delivery (email, push) happens elsewhere.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List

from models.audit import DomainEvent, EventType
from models.user import Role
from services.event_bus import EventBus
from services.store import Store

logger = logging.getLogger(__name__)

COLLECTION = "notifications"


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class NotificationService:
    def __init__(self, store: Store):
        self.store = store

    def register(self, bus: EventBus):
        bus.subscribe(EventType.ORDER_TRANSITIONED, self.on_order_transitioned)
        bus.subscribe(EventType.SUPPLIER_ORDER_CREATED, self.on_supplier_order_created)
        bus.subscribe(EventType.BATCH_LOCKED, self.on_batch_locked)

    async def notify(self, user_id: str, notification_type: str, title: str, body: str,
                     entity_type: str, entity_id: str, metadata: dict = None) -> dict:
        notification = {
            "notification_id": generate_id("notif"),
            "user_id": user_id,
            "notification_type": notification_type,
            "title": title,
            "body": body,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": metadata or {},
            "is_read": False,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        tx = self.store.transaction()
        tx.insert(COLLECTION, notification)
        await tx.commit()
        return notification

    async def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> List[dict]:
        query = {"user_id": user_id}
        if unread_only:
            query["is_read"] = False
        return await self.store.find(COLLECTION, query, sort=[("created_at", -1)], limit=limit)

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        doc = await self.store.find_one(COLLECTION, {"notification_id": notification_id, "user_id": user_id})
        if not doc:
            return False
        tx = self.store.transaction()
        tx.update(COLLECTION, {"notification_id": notification_id}, doc.get("version"), {
            "is_read": True,
            "read_at": datetime.now(timezone.utc).isoformat(),
        })
        await tx.commit()
        return True

    # ---------- Event handlers ----------

    async def on_order_transitioned(self, event: DomainEvent):
        buyer_id = event.payload.get("buyer_id")
        if not buyer_id:
            return
        status = event.payload.get("status", "")
        await self.notify(
            buyer_id,
            "order_status",
            f"Order {event.entity_id} is now {status.replace('_', ' ')}",
            event.payload.get("reason") or "",
            "order",
            event.entity_id,
            {"previous_status": event.payload.get("previous_status"), "status": status},
        )

    async def on_supplier_order_created(self, event: DomainEvent):
        supplier_id = event.payload.get("supplier_id")
        users = await self.store.find("users", {"supplier_id": supplier_id, "role": Role.SUPPLIER.value})
        for user in users:
            await self.notify(
                user["user_id"],
                "supplier_order_assigned",
                f"New production order for {event.payload.get('quantity')} units",
                f"Due {event.payload.get('target_date')}, please accept, reject or counter-offer",
                "supplier_order",
                event.entity_id,
                {"order_id": event.payload.get("order_id"), "batch_id": event.payload.get("batch_id")},
            )

    async def on_batch_locked(self, event: DomainEvent):
        contributions = await self.store.find("batch_contributions", {"batch_id": event.entity_id})
        order_ids = [c["order_id"] for c in contributions]
        if not order_ids:
            return
        orders = await self.store.find("orders", {"order_id": {"$in": order_ids}})
        for order in orders:
            await self.notify(
                order["buyer_id"],
                "batch_locked",
                "Your shared production batch is locked",
                f"Batch {event.entity_id} closed at {event.payload.get('fill_percentage', 0):.0f}% fill",
                "batch",
                event.entity_id,
                {"order_id": order["order_id"]},
            )
        logger.info(f"Notified {len(orders)} buyers that batch {event.entity_id} locked")

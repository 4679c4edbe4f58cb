"""
Supplier order workflow

Acceptance:  pending → accepted | rejected | counter_offered
             counter_offered → accepted | rejected   (admin decision only)
Production:  in_progress → completed, or rejected / cancelled as dead ends

Accepting instantiates the production stages and forwards the parent order(s)
in the same transaction. Rejecting or cancelling releases the committed
capacity in the same transaction.
Cancelling a parent order cancels its live supplier orders through the bus.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

import config
from models.audit import DomainEvent, EntityType, EventType
from models.order import Order, OrderStatus, TERMINAL_STATUSES
from models.supplier_order import (
    AcceptanceStatus, SupplierOrder, SupplierOrderStatus, TERMINAL_SUPPLIER_STATUSES,
)
from models.user import Role, SYSTEM_ACTOR, User
from services.audit_log import AuditLog
from services.capacity_ledger import CapacityLedger
from services.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, StateError, ValidationError,
)
from services.event_bus import EventBus
from services.order_state_machine import OrderStateMachine
from services.production_tracker import ProductionTracker
from services.store import Store, Transaction

logger = logging.getLogger(__name__)

COLLECTION = "supplier_orders"


def state_label(so: SupplierOrder) -> str:
    """Single audit label: acceptance status while pending, lifecycle status afterwards"""
    if so.status == SupplierOrderStatus.PENDING:
        return so.acceptance_status.value
    return so.status.value


class SupplierOrderStateMachine:
    def __init__(
        self,
        store: Store,
        audit: AuditLog,
        bus: EventBus,
        ledger: CapacityLedger,
        tracker: ProductionTracker,
        orders: OrderStateMachine,
        max_attempts: int = config.MAX_COMMIT_ATTEMPTS,
    ):
        self.store = store
        self.audit = audit
        self.bus = bus
        self.ledger = ledger
        self.tracker = tracker
        self.orders = orders
        self.max_attempts = max_attempts

    def register(self, bus: EventBus):
        bus.subscribe(EventType.ORDER_TRANSITIONED, self.on_order_transitioned)

    # ---------- Queries ----------

    async def get(self, supplier_order_id: str) -> SupplierOrder:
        doc = await self.store.find_one(COLLECTION, {"supplier_order_id": supplier_order_id})
        if not doc:
            raise NotFoundError(f"Supplier order {supplier_order_id} not found")
        return SupplierOrder(**doc)

    async def list(
        self,
        supplier_id: Optional[str] = None,
        order_id: Optional[str] = None,
        batch_id: Optional[str] = None,
        acceptance_status: Optional[AcceptanceStatus] = None,
    ) -> List[SupplierOrder]:
        query = {}
        if supplier_id:
            query["supplier_id"] = supplier_id
        if order_id:
            query["order_id"] = order_id
        if batch_id:
            query["batch_id"] = batch_id
        if acceptance_status:
            query["acceptance_status"] = acceptance_status.value
        docs = await self.store.find(COLLECTION, query, sort=[("created_at", -1)])
        return [SupplierOrder(**d) for d in docs]

    async def history(self, supplier_order_id: str):
        return await self.audit.history(EntityType.SUPPLIER_ORDER, supplier_order_id)

    # ---------- Supplier actions ----------

    async def accept(self, supplier_order_id: str, actor: User, notes: Optional[str] = None,
                     event_id: Optional[str] = None) -> SupplierOrder:
        async def build(tx: Transaction, so: SupplierOrder):
            self._require_owner_or_admin(so, actor)
            if so.acceptance_status != AcceptanceStatus.PENDING or so.status != SupplierOrderStatus.PENDING:
                raise StateError(f"Supplier order {so.supplier_order_id} is {state_label(so)}, not pending")
            changes = {"notes": notes} if notes is not None else {}
            return await self._stage_acceptance(tx, so, actor, changes), "accepted by supplier"

        return await self._apply(supplier_order_id, actor, event_id, build)

    async def reject(self, supplier_order_id: str, actor: User, reason: str,
                     event_id: Optional[str] = None) -> SupplierOrder:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")

        async def build(tx: Transaction, so: SupplierOrder):
            self._require_owner_or_admin(so, actor)
            if so.acceptance_status != AcceptanceStatus.PENDING or so.status != SupplierOrderStatus.PENDING:
                raise StateError(f"Supplier order {so.supplier_order_id} is {state_label(so)}, not pending")
            return await self._stage_rejection(tx, so, reason), reason

        return await self._apply(supplier_order_id, actor, event_id, build)

    async def counter_offer(self, supplier_order_id: str, actor: User, counter_price: float,
                            notes: Optional[str] = None, event_id: Optional[str] = None) -> SupplierOrder:
        if counter_price is None or counter_price <= 0:
            raise ValidationError("counter_price must be positive")

        async def build(tx: Transaction, so: SupplierOrder):
            if actor.role != Role.SUPPLIER or actor.supplier_id != so.supplier_id:
                raise PermissionDeniedError("Only the assigned supplier can submit a counter offer")
            if so.acceptance_status != AcceptanceStatus.PENDING or so.status != SupplierOrderStatus.PENDING:
                raise StateError(f"Supplier order {so.supplier_order_id} is {state_label(so)}, not pending")
            changes = {
                "acceptance_status": AcceptanceStatus.COUNTER_OFFERED.value,
                "counter_offer_price": counter_price,
                "counter_offer_notes": notes,
            }
            return (changes, []), "counter offer submitted"

        return await self._apply(supplier_order_id, actor, event_id, build)

    # ---------- Admin actions ----------

    async def resolve_counter_offer(self, supplier_order_id: str, actor: User, accept: bool,
                                    reason: Optional[str] = None,
                                    event_id: Optional[str] = None) -> SupplierOrder:
        """A counter offer stays open until an admin records this decision"""
        if actor.role != Role.ADMIN:
            raise PermissionDeniedError("Only admins can decide on counter offers")
        if not accept and (not reason or not reason.strip()):
            raise ValidationError("A reason is required when rejecting a counter offer")

        async def build(tx: Transaction, so: SupplierOrder):
            if so.acceptance_status != AcceptanceStatus.COUNTER_OFFERED:
                raise StateError(f"Supplier order {so.supplier_order_id} has no open counter offer")
            if accept:
                changes = {"supplier_price": so.counter_offer_price}
                return await self._stage_acceptance(tx, so, actor, changes), "counter offer accepted"
            return await self._stage_rejection(tx, so, reason), reason

        return await self._apply(supplier_order_id, actor, event_id, build)

    async def cancel(self, supplier_order_id: str, actor: User, reason: str,
                     event_id: Optional[str] = None) -> SupplierOrder:
        if not actor.is_staff:
            raise PermissionDeniedError("Only admin or system actors can cancel supplier orders")
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")

        async def build(tx: Transaction, so: SupplierOrder):
            if so.status in TERMINAL_SUPPLIER_STATUSES:
                raise StateError(f"Supplier order {so.supplier_order_id} is already {so.status.value}")
            changes = {"status": SupplierOrderStatus.CANCELLED.value, "rejection_reason": reason}
            events = await self._stage_release(tx, so)
            return (changes, events), reason

        return await self._apply(supplier_order_id, actor, event_id, build)

    async def on_order_transitioned(self, event: DomainEvent):
        """Release capacity held for an order that was cancelled"""
        if event.payload.get("status") != OrderStatus.CANCELLED.value:
            return
        order_id = event.entity_id
        for so in await self.list(order_id=order_id):
            if so.status in TERMINAL_SUPPLIER_STATUSES:
                continue
            try:
                await self.cancel(so.supplier_order_id, SYSTEM_ACTOR, f"Order {order_id} cancelled",
                                  event_id=f"{order_id}_cancelled")
            except StateError as e:
                logger.info(f"Supplier order {so.supplier_order_id} not cancelled with {order_id}: {e}")

    # ---------- Internals ----------

    def _require_owner_or_admin(self, so: SupplierOrder, actor: User):
        if actor.role == Role.SUPPLIER and actor.supplier_id == so.supplier_id:
            return
        if actor.is_staff:
            return
        raise PermissionDeniedError("Only the assigned supplier or an admin can act on this supplier order")

    async def _stage_acceptance(self, tx: Transaction, so: SupplierOrder, actor: User, changes: dict):
        now = datetime.now(timezone.utc)
        changes = {
            **changes,
            "acceptance_status": AcceptanceStatus.ACCEPTED.value,
            "status": SupplierOrderStatus.IN_PROGRESS.value,
            "accepted_at": now.isoformat(),
        }
        await self.tracker.stage_instantiation(tx, so)

        accepted = so.model_copy(update={
            "acceptance_status": AcceptanceStatus.ACCEPTED,
            "status": SupplierOrderStatus.IN_PROGRESS,
        })
        events = []
        for order in await self._parent_orders(so):
            siblings = [
                accepted if s.supplier_order_id == so.supplier_order_id else s
                for s in await self.orders.supplier_orders_for(order)
            ]
            _, order_events = self.orders.stage_acceptance_forward(tx, order, siblings, actor)
            events.extend(order_events)
        return changes, events

    async def _stage_rejection(self, tx: Transaction, so: SupplierOrder, reason: str):
        changes = {
            "acceptance_status": AcceptanceStatus.REJECTED.value,
            "status": SupplierOrderStatus.REJECTED.value,
            "rejection_reason": reason,
            "rejected_at": datetime.now(timezone.utc).isoformat(),
        }
        return changes, await self._stage_release(tx, so)

    async def _stage_release(self, tx: Transaction, so: SupplierOrder) -> List[DomainEvent]:
        record = await self.ledger.get(so.supplier_id, so.target_date)
        if record is None:
            logger.warning(f"No capacity record to release for {so.supplier_order_id}")
            return []
        _, event = self.ledger.stage_release(tx, record, so.quantity, so.supplier_order_id)
        return [event]

    async def _parent_orders(self, so: SupplierOrder) -> List[Order]:
        if so.order_id:
            docs = await self.store.find("orders", {"order_id": so.order_id})
        else:
            docs = await self.store.find("orders", {"batch_id": so.batch_id})
        terminal = {s.value for s in TERMINAL_STATUSES}
        return [Order(**d) for d in docs if d.get("workflow_status") not in terminal]

    async def _apply(self, supplier_order_id: str, actor: User, event_id: Optional[str], build) -> SupplierOrder:
        for attempt in range(1, self.max_attempts + 1):
            so = await self.get(supplier_order_id)
            if event_id and await self.audit.find_event(EntityType.SUPPLIER_ORDER, supplier_order_id, event_id):
                logger.info(f"Event {event_id} already applied to supplier order {supplier_order_id}, skipping")
                return so

            tx = self.store.transaction()
            (changes, side_events), reason = await build(tx, so)
            changes["updated_at"] = datetime.now(timezone.utc).isoformat()
            tx.update(COLLECTION, {"supplier_order_id": supplier_order_id}, so.version, changes)

            after = SupplierOrder(**{**so.model_dump(mode="json"), **changes})
            self.audit.append(
                tx, EntityType.SUPPLIER_ORDER, supplier_order_id,
                state_label(so), state_label(after), actor,
                event_id=event_id, reason=reason,
            )

            try:
                await tx.commit()
            except ConflictError as e:
                current = await self.get(supplier_order_id)
                if event_id and await self.audit.find_event(EntityType.SUPPLIER_ORDER, supplier_order_id, event_id):
                    return current
                if current.version != so.version:
                    raise StateError(f"Supplier order {supplier_order_id} changed concurrently, reload and retry")
                # Lost a race on capacity or the parent order; re-evaluate from fresh reads
                if attempt >= self.max_attempts:
                    raise ConflictError(f"Supplier order {supplier_order_id} update kept conflicting: {e.message}")
                continue

            self.bus.publish(DomainEvent(
                event_type=EventType.SUPPLIER_ORDER_TRANSITIONED,
                entity_id=supplier_order_id,
                payload={
                    "previous_status": state_label(so),
                    "status": state_label(after),
                    "order_id": so.order_id,
                    "batch_id": so.batch_id,
                    "supplier_id": so.supplier_id,
                    "actor_id": actor.user_id,
                },
            ))
            self.bus.publish_all(side_events)
            logger.info(f"Supplier order {supplier_order_id}: {state_label(so)} -> {state_label(after)}")
            return await self.get(supplier_order_id)

        raise ConflictError(f"Supplier order {supplier_order_id} update was not attempted")

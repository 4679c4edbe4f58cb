"""
Buyer order workflow

quote_requested → quote_sent → admin_review → awaiting_payment → payment_received
→ assigned_to_supplier → sample_requested → sample_approved → bulk_production
→ qc_inspection → ready_to_ship → shipped → delivered → completed

cancelled and on_hold are reachable from any non-terminal state. Orders never
move backwards on the main line; on_hold resumes to the state it was held from.
Transitions carrying an event_id are idempotent: replaying the same event is a
no-op that returns the current order.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import config
from models.audit import DomainEvent, EntityType, EventType, PaymentOutcome
from models.order import (
    ORDER_SEQUENCE, PAID_STATUSES, PRE_PAYMENT_STATUSES, TERMINAL_STATUSES,
    Order, OrderCreate, OrderStatus,
)
from models.supplier_order import AcceptanceStatus, DEAD_SUPPLIER_STATUSES, SupplierOrder
from models.user import Role, User
from services.audit_log import AuditLog
from services.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, StateError, ValidationError,
)
from services.event_bus import EventBus
from services.store import Store, Transaction

logger = logging.getLogger(__name__)

COLLECTION = "orders"

# Forward edges: each state to its successor, plus skipping the sample loop
FORWARD_EDGES: Dict[OrderStatus, set] = {
    current: {nxt} for current, nxt in zip(ORDER_SEQUENCE, ORDER_SEQUENCE[1:])
}
FORWARD_EDGES[OrderStatus.ASSIGNED_TO_SUPPLIER].add(OrderStatus.BULK_PRODUCTION)

# States an order may be pushed to bulk_production from when its supplier orders are all accepted
AUTO_FORWARD_FROM = {
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.ASSIGNED_TO_SUPPLIER,
    OrderStatus.SAMPLE_APPROVED,
}


def can_advance(current: OrderStatus, target: OrderStatus) -> bool:
    return target in FORWARD_EDGES.get(current, set())


def live_supplier_orders(supplier_orders: List[SupplierOrder]) -> List[SupplierOrder]:
    return [so for so in supplier_orders if so.status not in DEAD_SUPPLIER_STATUSES]


def all_accepted(supplier_orders: List[SupplierOrder]) -> bool:
    live = live_supplier_orders(supplier_orders)
    return bool(live) and all(so.acceptance_status == AcceptanceStatus.ACCEPTED for so in live)


class OrderStateMachine:
    def __init__(self, store: Store, audit: AuditLog, bus: EventBus,
                 max_attempts: int = config.MAX_COMMIT_ATTEMPTS):
        self.store = store
        self.audit = audit
        self.bus = bus
        self.max_attempts = max_attempts

    # ---------- Queries ----------

    async def get_order(self, order_id: str) -> Order:
        doc = await self.store.find_one(COLLECTION, {"order_id": order_id})
        if not doc:
            raise NotFoundError(f"Order {order_id} not found")
        return Order(**doc)

    async def list_orders(self, buyer_id: Optional[str] = None,
                          status: Optional[OrderStatus] = None) -> List[Order]:
        query = {}
        if buyer_id:
            query["buyer_id"] = buyer_id
        if status:
            query["workflow_status"] = status.value
        docs = await self.store.find(COLLECTION, query, sort=[("created_at", -1)])
        return [Order(**d) for d in docs]

    async def supplier_orders_for(self, order: Order) -> List[SupplierOrder]:
        """Supplier orders fulfilling this order, directly or through its batch"""
        docs = await self.store.find("supplier_orders", {"order_id": order.order_id})
        if order.batch_id:
            docs += await self.store.find("supplier_orders", {"batch_id": order.batch_id})
        return [SupplierOrder(**d) for d in docs]

    async def history(self, order_id: str):
        return await self.audit.history(EntityType.ORDER, order_id)

    # ---------- Commands ----------

    async def create_order(self, data: OrderCreate, actor: User) -> Order:
        """Orders are created when a buyer accepts a quote"""
        if data.quantity is None or data.quantity <= 0:
            raise ValidationError("quantity must be positive")
        if not data.product_type or not data.product_type.strip():
            raise ValidationError("product_type is required")
        if data.buyer_price is not None and data.buyer_price <= 0:
            raise ValidationError("buyer_price must be positive")

        if actor.role == Role.BUYER:
            buyer_id = actor.user_id
        elif actor.is_staff:
            buyer_id = data.buyer_id
            if not buyer_id:
                raise ValidationError("buyer_id is required")
        else:
            raise PermissionDeniedError("Not authorized to create orders")

        order = Order(
            buyer_id=buyer_id,
            product_type=data.product_type.strip(),
            quantity=data.quantity,
            target_date=data.target_date,
            buyer_price=data.buyer_price,
            invoice_id=data.invoice_id,
            notes=data.notes,
        )
        tx = self.store.transaction()
        tx.insert(COLLECTION, order.model_dump(mode="json"))
        self.audit.append(tx, EntityType.ORDER, order.order_id, None, order.workflow_status.value, actor)
        await tx.commit()

        self.bus.publish(DomainEvent(
            event_type=EventType.ORDER_CREATED,
            entity_id=order.order_id,
            payload={"buyer_id": buyer_id, "quantity": order.quantity, "product_type": order.product_type},
        ))
        logger.info(f"Order {order.order_id} created for buyer {buyer_id}")
        return order

    async def transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: User,
        event_id: Optional[str] = None,
        payment_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        if target == OrderStatus.CANCELLED:
            return await self.cancel(order_id, actor, reason=reason, event_id=event_id)
        if target == OrderStatus.ON_HOLD:
            return await self.hold(order_id, actor, reason=reason, event_id=event_id)

        async def decide(order: Order):
            if not actor.is_staff:
                raise PermissionDeniedError("Only admin or system actors can advance orders")
            if order.workflow_status == OrderStatus.ON_HOLD:
                raise StateError(f"Order {order.order_id} is on hold, resume it first")
            if not can_advance(order.workflow_status, target):
                raise StateError(
                    f"Cannot move order {order.order_id} from {order.workflow_status.value} to {target.value}"
                )
            await self._check_guard(order, target, payment_ref)
            return target, {}, reason

        return await self._apply(order_id, actor, event_id, decide)

    async def cancel(self, order_id: str, actor: User, reason: Optional[str] = None,
                     event_id: Optional[str] = None) -> Order:
        async def decide(order: Order):
            if order.workflow_status in TERMINAL_STATUSES:
                raise StateError(f"Order {order.order_id} is already {order.workflow_status.value}")
            if actor.role == Role.BUYER:
                if order.buyer_id != actor.user_id:
                    raise PermissionDeniedError("Buyers can only cancel their own orders")
                if order.workflow_status not in PRE_PAYMENT_STATUSES:
                    raise PermissionDeniedError("Orders can only be cancelled by the buyer before payment")
            elif not actor.is_staff:
                raise PermissionDeniedError("Not authorized to cancel orders")
            return OrderStatus.CANCELLED, {"cancellation_reason": reason}, reason

        return await self._apply(order_id, actor, event_id, decide)

    async def hold(self, order_id: str, actor: User, reason: Optional[str] = None,
                   event_id: Optional[str] = None) -> Order:
        async def decide(order: Order):
            if not actor.is_staff:
                raise PermissionDeniedError("Only admin or system actors can put orders on hold")
            if order.workflow_status in TERMINAL_STATUSES or order.workflow_status == OrderStatus.ON_HOLD:
                raise StateError(f"Order {order.order_id} is {order.workflow_status.value} and cannot be put on hold")
            return OrderStatus.ON_HOLD, {"held_from": order.workflow_status.value}, reason

        return await self._apply(order_id, actor, event_id, decide)

    async def resume(self, order_id: str, actor: User, event_id: Optional[str] = None) -> Order:
        async def decide(order: Order):
            if not actor.is_staff:
                raise PermissionDeniedError("Only admin or system actors can resume orders")
            if order.workflow_status != OrderStatus.ON_HOLD or not order.held_from:
                raise StateError(f"Order {order.order_id} is not on hold")
            return order.held_from, {"held_from": None}, "resumed"

        return await self._apply(order_id, actor, event_id, decide)

    async def update_buyer_price(self, order_id: str, buyer_price: float, actor: User) -> Order:
        if buyer_price is None or buyer_price <= 0:
            raise ValidationError("buyer_price must be positive")
        if not actor.is_staff:
            raise PermissionDeniedError("Only admin or system actors can change prices")

        order = await self.get_order(order_id)
        if order.payment_status in PAID_STATUSES:
            raise StateError(f"Order {order_id} is paid, its price is locked")

        tx = self.store.transaction()
        tx.update(COLLECTION, {"order_id": order_id}, order.version, {
            "buyer_price": buyer_price,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        })
        try:
            await tx.commit()
        except ConflictError:
            raise StateError(f"Order {order_id} changed concurrently, reload and retry")
        return await self.get_order(order_id)

    async def order_progress(self, order_id: str, tracker) -> float:
        """Mean stage completion across all live supplier orders of this order"""
        order = await self.get_order(order_id)
        supplier_orders = live_supplier_orders(await self.supplier_orders_for(order))
        if not supplier_orders:
            return 0.0
        total = 0.0
        for so in supplier_orders:
            total += (await tracker.progress(so.supplier_order_id)).overall_progress
        return round(total / len(supplier_orders), 2)

    # ---------- Building blocks shared with the supplier order and payment flows ----------

    def stage_transition(
        self,
        tx: Transaction,
        order: Order,
        target: OrderStatus,
        actor: User,
        event_id: Optional[str] = None,
        reason: Optional[str] = None,
        extra_changes: Optional[dict] = None,
    ) -> Tuple[Order, DomainEvent]:
        """Add the status write and its audit record to `tx`; returns the post-commit order snapshot"""
        now = datetime.now(timezone.utc)
        changes = {"workflow_status": target.value, "updated_at": now.isoformat()}
        changes.update(extra_changes or {})
        tx.update(COLLECTION, {"order_id": order.order_id}, order.version, changes)
        self.audit.append(
            tx, EntityType.ORDER, order.order_id,
            order.workflow_status.value, target.value, actor,
            event_id=event_id, reason=reason,
        )

        updated = Order(**{**order.model_dump(mode="json"), **changes, "version": order.version + 1})
        event = DomainEvent(
            event_type=EventType.ORDER_TRANSITIONED,
            entity_id=order.order_id,
            payload={
                "previous_status": order.workflow_status.value,
                "status": target.value,
                "buyer_id": order.buyer_id,
                "actor_id": actor.user_id,
                "reason": reason,
            },
        )
        return updated, event

    def stage_touch(self, tx: Transaction, order: Order) -> Order:
        """Version bump with no status change - serialises writers that depend on this order"""
        now = datetime.now(timezone.utc)
        tx.update(COLLECTION, {"order_id": order.order_id}, order.version, {"updated_at": now.isoformat()})
        return order.model_copy(update={"updated_at": now, "version": order.version + 1})

    def stage_acceptance_forward(
        self,
        tx: Transaction,
        order: Order,
        supplier_orders: List[SupplierOrder],
        actor: User,
    ) -> Tuple[Order, List[DomainEvent]]:
        """Forward an order once its supplier orders are accepted (given their post-acceptance state)"""
        events = []
        if order.workflow_status not in AUTO_FORWARD_FROM:
            return self.stage_touch(tx, order), events

        accepted_any = any(so.acceptance_status == AcceptanceStatus.ACCEPTED for so in supplier_orders)
        if order.workflow_status == OrderStatus.PAYMENT_RECEIVED and accepted_any:
            order, event = self.stage_transition(
                tx, order, OrderStatus.ASSIGNED_TO_SUPPLIER, actor, reason="supplier accepted order"
            )
            events.append(event)

        if order.workflow_status in (OrderStatus.ASSIGNED_TO_SUPPLIER, OrderStatus.SAMPLE_APPROVED) \
                and all_accepted(supplier_orders):
            order, event = self.stage_transition(
                tx, order, OrderStatus.BULK_PRODUCTION, actor, reason="all supplier orders accepted"
            )
            events.append(event)

        if not events:
            order = self.stage_touch(tx, order)
        return order, events

    # ---------- Internals ----------

    async def _check_guard(self, order: Order, target: OrderStatus, payment_ref: Optional[str]):
        if target == OrderStatus.PAYMENT_RECEIVED:
            if not payment_ref:
                raise StateError("payment_received requires a payment confirmation reference")
            payment = await self.store.find_one("payment_events", {
                "payment_ref": payment_ref,
                "outcome": PaymentOutcome.SUCCEEDED.value,
            })
            if not payment or payment.get("order_id") != order.order_id:
                raise StateError(f"No confirmed payment {payment_ref} for order {order.order_id}")

        elif target == OrderStatus.ASSIGNED_TO_SUPPLIER:
            supplier_orders = await self.supplier_orders_for(order)
            if not any(so.acceptance_status == AcceptanceStatus.ACCEPTED for so in supplier_orders):
                raise StateError(f"Order {order.order_id} has no accepted supplier order")

        elif target == OrderStatus.BULK_PRODUCTION:
            if not all_accepted(await self.supplier_orders_for(order)):
                raise StateError(f"Not all supplier orders of {order.order_id} are accepted")

    async def _apply(self, order_id: str, actor: User, event_id: Optional[str], decide) -> Order:
        order = await self.get_order(order_id)
        if event_id and await self.audit.find_event(EntityType.ORDER, order_id, event_id):
            logger.info(f"Event {event_id} already applied to order {order_id}, skipping")
            return order

        target, extra_changes, reason = await decide(order)
        tx = self.store.transaction()
        _, event = self.stage_transition(tx, order, target, actor, event_id, reason, extra_changes)
        try:
            await tx.commit()
        except ConflictError:
            if event_id and await self.audit.find_event(EntityType.ORDER, order_id, event_id):
                return await self.get_order(order_id)
            raise StateError(f"Order {order_id} changed concurrently, reload and retry")

        self.bus.publish(event)
        logger.info(f"Order {order_id}: {order.workflow_status.value} -> {target.value} by {actor.user_id}")
        return await self.get_order(order_id)

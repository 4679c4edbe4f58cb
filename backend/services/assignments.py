"""
Authoritative assignment commit

Re-validates the supplier's capacity on the target date and, in one
transaction, increments utilization and creates the pending supplier order.
Two concurrent commits can never both take the same headroom: the loser's
compare-and-set fails, it re-reads and either fits in what is left or gets
CapacityExhaustedError.
"""
import logging
from datetime import date
from typing import List, Tuple

import config
from models.audit import DomainEvent, EntityType, EventType
from models.capacity import CapacityRecord, VerificationStatus
from models.order import TERMINAL_STATUSES
from models.supplier_order import AssignmentCreate, SupplierOrder
from models.user import User
from services.audit_log import AuditLog
from services.capacity_ledger import CapacityLedger
from services.errors import (
    CapacityExhaustedError, NotFoundError, PermissionDeniedError, StateError, ValidationError,
)
from services.event_bus import EventBus
from services.store import Store, Transaction, run_with_retry
from services.suppliers import SupplierDirectory

logger = logging.getLogger(__name__)

COLLECTION = "supplier_orders"


class AssignmentService:
    def __init__(
        self,
        store: Store,
        ledger: CapacityLedger,
        suppliers: SupplierDirectory,
        audit: AuditLog,
        bus: EventBus,
        max_attempts: int = config.MAX_COMMIT_ATTEMPTS,
    ):
        self.store = store
        self.ledger = ledger
        self.suppliers = suppliers
        self.audit = audit
        self.bus = bus
        self.max_attempts = max_attempts

    async def eligible_record(self, supplier_id: str, target_date: date, quantity: int) -> CapacityRecord:
        """Fresh capacity record for a verified, active supplier with room for `quantity`"""
        try:
            supplier = await self.suppliers.get(supplier_id)
        except NotFoundError:
            raise CapacityExhaustedError(f"Supplier {supplier_id} does not exist")
        if supplier.verification_status != VerificationStatus.VERIFIED or not supplier.is_active:
            raise CapacityExhaustedError(f"Supplier {supplier_id} is not verified and active")

        record = await self.ledger.get(supplier_id, target_date)
        if record is None:
            raise CapacityExhaustedError(f"Supplier {supplier_id} has no capacity on {target_date}")
        if record.available_capacity < quantity:
            raise CapacityExhaustedError(
                f"Supplier {supplier_id} has {record.available_capacity} available on {target_date}, "
                f"{quantity} requested"
            )
        return record

    def stage_supplier_order(
        self,
        tx: Transaction,
        record: CapacityRecord,
        supplier_order: SupplierOrder,
        actor: User,
    ) -> List[DomainEvent]:
        """Capacity commit + supplier order insert + audit, all added to `tx`"""
        _, capacity_event = self.ledger.stage_commit(
            tx, record, supplier_order.quantity, supplier_order.supplier_order_id
        )
        tx.insert(COLLECTION, supplier_order.model_dump(mode="json"))
        self.audit.append(
            tx, EntityType.SUPPLIER_ORDER, supplier_order.supplier_order_id,
            None, supplier_order.status.value, actor, reason="assignment committed",
        )
        created_event = DomainEvent(
            event_type=EventType.SUPPLIER_ORDER_CREATED,
            entity_id=supplier_order.supplier_order_id,
            payload={
                "supplier_id": supplier_order.supplier_id,
                "order_id": supplier_order.order_id,
                "batch_id": supplier_order.batch_id,
                "quantity": supplier_order.quantity,
                "target_date": supplier_order.target_date.isoformat(),
            },
        )
        return [capacity_event, created_event]

    async def commit_assignment(self, data: AssignmentCreate, actor: User) -> SupplierOrder:
        if not actor.is_staff:
            raise PermissionDeniedError("Only admin or system actors can assign suppliers")
        if data.quantity is None or data.quantity <= 0:
            raise ValidationError("quantity must be positive")
        if bool(data.order_id) == bool(data.batch_id):
            raise ValidationError("Exactly one of order_id or batch_id is required")

        product_type = await self._owner_product_type(data)

        async def attempt() -> Tuple[SupplierOrder, List[DomainEvent]]:
            record = await self.eligible_record(data.supplier_id, data.target_date, data.quantity)
            supplier_order = SupplierOrder(
                supplier_id=data.supplier_id,
                order_id=data.order_id,
                batch_id=data.batch_id,
                product_type=product_type,
                quantity=data.quantity,
                target_date=data.target_date,
                supplier_price=data.supplier_price,
            )
            tx = self.store.transaction()
            events = self.stage_supplier_order(tx, record, supplier_order, actor)
            await tx.commit()
            return supplier_order, events

        supplier_order, events = await run_with_retry(attempt, self.max_attempts, "commit_assignment")
        self.bus.publish_all(events)
        logger.info(
            f"Assigned {data.quantity} units to supplier {data.supplier_id} on {data.target_date} "
            f"({supplier_order.supplier_order_id})"
        )
        return supplier_order

    async def _owner_product_type(self, data: AssignmentCreate) -> str:
        if data.order_id:
            order = await self.store.find_one("orders", {"order_id": data.order_id})
            if not order:
                raise NotFoundError(f"Order {data.order_id} not found")
            if order["workflow_status"] in {s.value for s in TERMINAL_STATUSES}:
                raise StateError(f"Order {data.order_id} is {order['workflow_status']}")
            return order["product_type"]

        batch = await self.store.find_one("production_batches", {"batch_id": data.batch_id})
        if not batch:
            raise NotFoundError(f"Batch {data.batch_id} not found")
        return batch["product_category"]

"""
Batch aggregation - merges small orders into shared production runs

Joining is one transaction: the batch counters (compare-and-set on version),
the contribution row, the order's batch_id and locked buyer price, and the
lock itself when the batch fills up. A losing concurrent join re-reads and
re-evaluates eligibility, so a batch can never exceed its quantity or style
limits.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import config
from models.audit import DomainEvent, EntityType, EventType
from models.batch import (
    Batch, BatchAssignRequest, BatchContribution, BatchDefaults, BatchJoinResult,
    BatchQuote, BatchQuoteRequest, BatchStatus,
)
from models.order import Order, PAID_STATUSES, TERMINAL_STATUSES
from models.pricing import PricingRules
from models.supplier_order import SupplierOrder
from models.user import SYSTEM_ACTOR, Role, User
from services.assignments import AssignmentService
from services.audit_log import AuditLog
from services.errors import (
    CapacityExhaustedError, ConflictError, NotFoundError, PermissionDeniedError,
    StateError, ValidationError,
)
from services.event_bus import EventBus
from services.pricing_engine import calculate_price
from services.production_tracker import category_for_product
from services.store import Store, run_with_retry

logger = logging.getLogger(__name__)

COLLECTION = "production_batches"
CONTRIBUTIONS = "batch_contributions"
ORDERS = "orders"


def is_expired(batch: Batch, now: datetime) -> bool:
    return now >= batch.window_closes_at


def can_accept(batch: Batch, product_category: str, style_key: str, quantity: int, now: datetime) -> bool:
    """Category match, a free style slot for new styles, and room within target + tolerance"""
    if batch.status != BatchStatus.OPEN or is_expired(batch, now):
        return False
    if batch.product_category != product_category:
        return False
    if style_key not in batch.styles and batch.current_style_count >= batch.max_styles:
        return False
    return batch.current_quantity + quantity <= batch.target_quantity + batch.overflow_tolerance


def split_quantity(total: int, capacities: Dict[str, int]) -> Dict[str, int]:
    """
    Split `total` across suppliers proportionally to their available capacity.
    Largest-remainder rounding; ties go to the supplier listed first.
    """
    pool = sum(capacities.values())
    if total <= 0:
        return {supplier_id: 0 for supplier_id in capacities}
    if pool < total:
        raise CapacityExhaustedError(f"Selected suppliers have {pool} units available, {total} needed")

    shares = {}
    remainders = []
    for position, (supplier_id, available) in enumerate(capacities.items()):
        exact = total * available
        shares[supplier_id] = exact // pool
        remainders.append((-(exact % pool), position, supplier_id))

    leftover = total - sum(shares.values())
    for _, _, supplier_id in sorted(remainders)[:leftover]:
        shares[supplier_id] += 1
    return shares


class BatchAggregator:
    def __init__(
        self,
        store: Store,
        audit: AuditLog,
        bus: EventBus,
        assignments: AssignmentService,
        rules: Optional[PricingRules] = None,
        defaults: Optional[BatchDefaults] = None,
        clock=None,
        max_attempts: int = config.MAX_COMMIT_ATTEMPTS,
    ):
        self.store = store
        self.audit = audit
        self.bus = bus
        self.assignments = assignments
        self.rules = rules or PricingRules()
        self.defaults = defaults or BatchDefaults()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.max_attempts = max_attempts

    # ---------- Queries ----------

    async def get(self, batch_id: str) -> Batch:
        doc = await self.store.find_one(COLLECTION, {"batch_id": batch_id})
        if not doc:
            raise NotFoundError(f"Batch {batch_id} not found")
        return Batch(**doc)

    async def list(self, status: Optional[BatchStatus] = None,
                   product_category: Optional[str] = None) -> List[Batch]:
        query = {}
        if status:
            query["status"] = status.value
        if product_category:
            query["product_category"] = product_category
        docs = await self.store.find(COLLECTION, query, sort=[("created_at", -1)])
        return [Batch(**d) for d in docs]

    async def contributions(self, batch_id: str) -> List[BatchContribution]:
        docs = await self.store.find(CONTRIBUTIONS, {"batch_id": batch_id}, sort=[("committed_at", 1)])
        return [BatchContribution(**d) for d in docs]

    async def history(self, batch_id: str):
        return await self.audit.history(EntityType.BATCH, batch_id)

    async def find_open_batch(self, product_category: str, style_key: str, quantity: int) -> Optional[Batch]:
        """Oldest open, unexpired batch that can take this contribution"""
        now = self.clock()
        docs = await self.store.find(
            COLLECTION,
            {"status": BatchStatus.OPEN.value, "product_category": product_category},
            sort=[("created_at", 1)],
        )
        for doc in docs:
            batch = Batch(**doc)
            if can_accept(batch, product_category, style_key, quantity, now):
                return batch
        return None

    async def quote_join(self, data: BatchQuoteRequest) -> BatchQuote:
        """Preview the join price without reserving anything"""
        self._check_size(data.quantity)
        category = category_for_product(data.product_category)
        batch = await self.find_open_batch(category, data.style_key, data.quantity)

        if batch:
            quantity_after = batch.current_quantity + data.quantity
            styles_after = batch.current_style_count + (0 if data.style_key in batch.styles else 1)
            target = batch.target_quantity
        else:
            quantity_after = data.quantity
            styles_after = 1
            target = self.defaults.target_quantity

        fill = quantity_after / target * 100 if target > 0 else 0.0
        return BatchQuote(
            batch_id=batch.batch_id if batch else None,
            fill_percentage_after_join=round(fill, 2),
            style_count_after_join=styles_after,
            pricing=calculate_price(data.base_price, data.quantity, styles_after, fill, self.rules),
        )

    # ---------- Commands ----------

    async def join_batch(self, order_id: str, style_key: str, base_price: float, actor: User) -> BatchJoinResult:
        if not style_key or not style_key.strip():
            raise ValidationError("style_key is required")
        if base_price is None or base_price <= 0:
            raise ValidationError("base_price must be positive")
        style_key = style_key.strip()

        async def attempt():
            order = await self._joinable_order(order_id, actor)
            category = category_for_product(order.product_type)
            self._check_size(order.quantity)

            now = self.clock()
            batch = await self.find_open_batch(category, style_key, order.quantity)
            tx = self.store.transaction()

            if batch is None:
                batch = Batch(
                    product_category=category,
                    target_quantity=self.defaults.target_quantity,
                    max_styles=self.defaults.max_styles,
                    overflow_tolerance=self.defaults.overflow_tolerance,
                    unit_price_base=base_price,
                    window_closes_at=now + timedelta(days=self.defaults.window_days),
                    created_at=now,
                    updated_at=now,
                )
                before = None
                logger.info(f"Opening batch {batch.batch_id} for {category}")
            else:
                before = batch

            styles = list(batch.styles) if before else []
            if style_key not in styles:
                styles.append(style_key)
            quantity = (batch.current_quantity if before else 0) + order.quantity
            fill = quantity / batch.target_quantity * 100
            pricing = calculate_price(base_price, order.quantity, len(styles), fill, self.rules)

            changes = {
                "current_quantity": quantity,
                "current_style_count": len(styles),
                "styles": styles,
                "updated_at": now.isoformat(),
            }
            if batch.unit_price_base is None:
                changes["unit_price_base"] = base_price
            locking = quantity >= batch.target_quantity
            if locking:
                changes["status"] = BatchStatus.LOCKED.value
                changes["locked_at"] = now.isoformat()

            if before is None:
                tx.insert(COLLECTION, Batch(**{**batch.to_doc(), **changes}).to_doc())
            else:
                tx.update(COLLECTION, {"batch_id": batch.batch_id}, batch.version, changes)

            if locking:
                self.audit.append(
                    tx, EntityType.BATCH, batch.batch_id,
                    BatchStatus.OPEN.value, BatchStatus.LOCKED.value, actor, reason="target quantity reached",
                )

            contribution = BatchContribution(
                batch_id=batch.batch_id,
                order_id=order.order_id,
                style_key=style_key,
                quantity=order.quantity,
                buyer_price_per_unit=pricing.buyer_price,
                fill_percentage_at_join=round(fill, 2),
                committed_at=now,
            )
            tx.insert(CONTRIBUTIONS, contribution.model_dump(mode="json"))
            tx.update(ORDERS, {"order_id": order.order_id}, order.version, {
                "batch_id": batch.batch_id,
                "buyer_price": pricing.buyer_price,
                "updated_at": now.isoformat(),
            })
            await tx.commit()

            joined = Batch(**{**batch.to_doc(), **changes, "version": batch.version + 1 if before else 1})
            return joined, contribution, pricing, locking

        batch, contribution, pricing, locked = await run_with_retry(attempt, self.max_attempts, "join_batch")

        events = [DomainEvent(
            event_type=EventType.BATCH_JOINED,
            entity_id=batch.batch_id,
            payload={
                "order_id": order_id,
                "style_key": style_key,
                "quantity": contribution.quantity,
                "current_quantity": batch.current_quantity,
                "fill_percentage": batch.fill_percentage,
                "buyer_price_per_unit": contribution.buyer_price_per_unit,
            },
        )]
        if locked:
            events.append(self._locked_event(batch, "target quantity reached"))
        self.bus.publish_all(events)
        logger.info(
            f"Order {order_id} joined batch {batch.batch_id} "
            f"({batch.current_quantity}/{batch.target_quantity}, {batch.current_style_count} styles)"
        )
        return BatchJoinResult(batch=batch, contribution=contribution, pricing=pricing)

    async def lock_batch(self, batch_id: str, actor: User, reason: str = "locked manually") -> Batch:
        if not actor.is_staff:
            raise PermissionDeniedError("Only admin or system actors can lock batches")
        return await self._lock(batch_id, actor, reason)

    async def lock_expired(self, now: Optional[datetime] = None) -> List[Batch]:
        """Lock every open batch whose window has closed; run periodically by the scheduler"""
        now = now or self.clock()
        docs = await self.store.find(COLLECTION, {"status": BatchStatus.OPEN.value})
        locked = []
        for doc in docs:
            batch = Batch(**doc)
            if not is_expired(batch, now):
                continue
            try:
                locked.append(await self._lock(batch.batch_id, SYSTEM_ACTOR, "batch window closed"))
            except StateError:
                # Filled and locked by a concurrent join
                logger.info(f"Batch {batch.batch_id} was locked concurrently")
        if locked:
            logger.info(f"Locked {len(locked)} expired batches")
        return locked

    async def assign_batch(self, batch_id: str, data: BatchAssignRequest, actor: User) -> List[SupplierOrder]:
        """Split a locked batch across suppliers in proportion to their free capacity"""
        if not actor.is_staff:
            raise PermissionDeniedError("Only admin or system actors can assign batches")
        supplier_ids = list(dict.fromkeys(data.supplier_ids))
        if not supplier_ids:
            raise ValidationError("At least one supplier is required")

        async def attempt():
            batch = await self.get(batch_id)
            if batch.status != BatchStatus.LOCKED:
                raise StateError(f"Batch {batch_id} is {batch.status.value}, only locked batches can be assigned")
            if batch.current_quantity <= 0:
                raise StateError(f"Batch {batch_id} is empty")

            records = {}
            for supplier_id in supplier_ids:
                records[supplier_id] = await self.assignments.eligible_record(supplier_id, data.target_date, 1)
            shares = split_quantity(
                batch.current_quantity,
                {sid: record.available_capacity for sid, record in records.items()},
            )

            now = self.clock()
            tx = self.store.transaction()
            events = []
            supplier_orders = []
            for supplier_id, quantity in shares.items():
                if quantity <= 0:
                    continue
                supplier_order = SupplierOrder(
                    supplier_id=supplier_id,
                    batch_id=batch.batch_id,
                    product_type=batch.product_category,
                    quantity=quantity,
                    target_date=data.target_date,
                    supplier_price=data.supplier_price,
                )
                events += self.assignments.stage_supplier_order(tx, records[supplier_id], supplier_order, actor)
                supplier_orders.append(supplier_order)

            tx.update(COLLECTION, {"batch_id": batch.batch_id}, batch.version, {
                "status": BatchStatus.ASSIGNED.value,
                "assigned_at": now.isoformat(),
                "updated_at": now.isoformat(),
            })
            self.audit.append(
                tx, EntityType.BATCH, batch.batch_id,
                BatchStatus.LOCKED.value, BatchStatus.ASSIGNED.value, actor,
                reason=f"split across {len(supplier_orders)} suppliers",
            )
            await tx.commit()
            return supplier_orders, events

        supplier_orders, events = await run_with_retry(attempt, self.max_attempts, "assign_batch")
        events.append(DomainEvent(
            event_type=EventType.BATCH_ASSIGNED,
            entity_id=batch_id,
            payload={
                "target_date": data.target_date.isoformat(),
                "allocations": {so.supplier_id: so.quantity for so in supplier_orders},
            },
        ))
        self.bus.publish_all(events)
        logger.info(f"Batch {batch_id} assigned to {len(supplier_orders)} suppliers")
        return supplier_orders

    # ---------- Internals ----------

    def _check_size(self, quantity: int):
        limit = self.defaults.target_quantity + self.defaults.overflow_tolerance
        if quantity is None or quantity <= 0:
            raise ValidationError("quantity must be positive")
        if quantity > limit:
            raise ValidationError(
                f"Order of {quantity} units exceeds the batch size of {limit}, price it individually"
            )

    async def _joinable_order(self, order_id: str, actor: User) -> Order:
        doc = await self.store.find_one(ORDERS, {"order_id": order_id})
        if not doc:
            raise NotFoundError(f"Order {order_id} not found")
        order = Order(**doc)

        if actor.role == Role.BUYER:
            if order.buyer_id != actor.user_id:
                raise PermissionDeniedError("Buyers can only add their own orders to a batch")
        elif not actor.is_staff:
            raise PermissionDeniedError("Not authorized to join batches")

        if order.batch_id:
            raise StateError(f"Order {order_id} is already in batch {order.batch_id}")
        if order.workflow_status in TERMINAL_STATUSES:
            raise StateError(f"Order {order_id} is {order.workflow_status.value}")
        if order.payment_status in PAID_STATUSES:
            raise StateError(f"Order {order_id} is paid, its price is locked")
        return order

    async def _lock(self, batch_id: str, actor: User, reason: str) -> Batch:
        batch = await self.get(batch_id)
        if batch.status != BatchStatus.OPEN:
            raise StateError(f"Batch {batch_id} is already {batch.status.value}")

        now = self.clock()
        changes = {
            "status": BatchStatus.LOCKED.value,
            "locked_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        tx = self.store.transaction()
        tx.update(COLLECTION, {"batch_id": batch_id}, batch.version, changes)
        self.audit.append(
            tx, EntityType.BATCH, batch_id,
            BatchStatus.OPEN.value, BatchStatus.LOCKED.value, actor, reason=reason,
        )
        try:
            await tx.commit()
        except ConflictError:
            raise StateError(f"Batch {batch_id} changed concurrently, reload and retry")

        locked = await self.get(batch_id)
        self.bus.publish(self._locked_event(locked, reason))
        logger.info(f"Batch {batch_id} locked at {locked.current_quantity}/{locked.target_quantity}: {reason}")
        return locked

    def _locked_event(self, batch: Batch, reason: str) -> DomainEvent:
        return DomainEvent(
            event_type=EventType.BATCH_LOCKED,
            entity_id=batch.batch_id,
            payload={
                "current_quantity": batch.current_quantity,
                "target_quantity": batch.target_quantity,
                "fill_percentage": batch.fill_percentage,
                "reason": reason,
            },
        )

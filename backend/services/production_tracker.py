"""
Production stage tracker

Stages are instantiated once per supplier order (from the category's template
set, or the default five-stage sequence) and then only updated in place.
Completing the last stage completes the supplier order in the same transaction.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from models.audit import DomainEvent, EntityType, EventType
from models.production import (
    ProductionStage, StageProgress, StageStatus, StageTemplate, StageTemplateCreate,
)
from models.supplier_order import SupplierOrder, SupplierOrderStatus
from models.user import Role, User
from services.audit_log import AuditLog
from services.errors import (
    ConflictError, NotFoundError, PermissionDeniedError, StateError, ValidationError,
)
from services.event_bus import EventBus
from services.store import Store, Transaction

logger = logging.getLogger(__name__)

COLLECTION = "production_stages"
TEMPLATE_COLLECTION = "production_stage_templates"
SUPPLIER_ORDERS = "supplier_orders"

DEFAULT_CATEGORY = "casualwear"

PRODUCT_CATEGORY_MAP = {
    "t-shirt": "casualwear",
    "t-shirts": "casualwear",
    "polo": "casualwear",
    "polo shirt": "casualwear",
    "hoodie": "casualwear",
    "hoodies": "casualwear",
    "sweatshirt": "casualwear",
    "joggers": "activewear",
    "leggings": "activewear",
    "shorts": "activewear",
    "sweater": "knitwear",
    "cardigan": "knitwear",
}

DEFAULT_STAGES = [
    {"stage_number": 1, "stage_name": "Fabric Preparation", "description": "Fabric received and quality checked", "estimated_days": 2},
    {"stage_number": 2, "stage_name": "Cutting", "description": "Pattern cutting and preparation", "estimated_days": 3},
    {"stage_number": 3, "stage_name": "Sewing", "description": "Main garment assembly", "estimated_days": 5},
    {"stage_number": 4, "stage_name": "Quality Control", "description": "Inspection and defect checking", "estimated_days": 2},
    {"stage_number": 5, "stage_name": "Finishing", "description": "Ironing, tagging, and packaging", "estimated_days": 2},
]


def category_for_product(product_type: Optional[str]) -> str:
    if not product_type:
        return DEFAULT_CATEGORY
    key = product_type.strip().lower()
    if key in PRODUCT_CATEGORY_MAP.values():
        return key
    return PRODUCT_CATEGORY_MAP.get(key, DEFAULT_CATEGORY)


def overall_progress(stages: List[ProductionStage]) -> float:
    """Arithmetic mean of stage completion percentages"""
    if not stages:
        return 0.0
    return sum(s.completion_percentage for s in stages) / len(stages)


def current_stage(stages: List[ProductionStage]) -> Optional[ProductionStage]:
    """First stage below 100%, or the last stage once everything is complete"""
    if not stages:
        return None
    ordered = sorted(stages, key=lambda s: s.stage_number)
    for stage in ordered:
        if stage.completion_percentage < 100:
            return stage
    return ordered[-1]


class ProductionTracker:
    def __init__(self, store: Store, audit: AuditLog, bus: EventBus, clock=None):
        self.store = store
        self.audit = audit
        self.bus = bus
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ---------- Templates ----------

    async def templates_for(self, product_category: str) -> List[StageTemplate]:
        docs = await self.store.find(
            TEMPLATE_COLLECTION,
            {"product_category": product_category, "active": True},
            sort=[("stage_number", 1)],
        )
        return [StageTemplate(**d) for d in docs]

    async def save_template(self, data: StageTemplateCreate) -> StageTemplate:
        template = StageTemplate(**data.model_dump())
        tx = self.store.transaction()
        tx.insert(TEMPLATE_COLLECTION, template.model_dump(mode="json"))
        await tx.commit()
        return template

    # ---------- Instantiation ----------

    async def build_stages(self, supplier_order_id: str, product_type: str) -> List[ProductionStage]:
        """Stage set for a supplier order; target dates accumulate the estimated days of earlier stages"""
        category = category_for_product(product_type)
        templates = await self.templates_for(category)
        if templates:
            specs = [t.model_dump() for t in templates]
        else:
            logger.info(f"No stage templates for {category}, using default stages")
            specs = DEFAULT_STAGES

        now = self.clock()
        elapsed_days = 0
        stages = []
        for number, spec in enumerate(specs, start=1):
            elapsed_days += spec.get("estimated_days") or 0
            stages.append(ProductionStage(
                supplier_order_id=supplier_order_id,
                stage_number=number,
                stage_name=spec["stage_name"],
                description=spec.get("description") or "",
                target_date=now + timedelta(days=elapsed_days),
                created_at=now,
                updated_at=now,
            ))
        return stages

    async def stage_instantiation(self, tx: Transaction, supplier_order: SupplierOrder) -> List[ProductionStage]:
        existing = await self.store.find_one(COLLECTION, {"supplier_order_id": supplier_order.supplier_order_id})
        if existing:
            raise StateError(f"Production stages already exist for {supplier_order.supplier_order_id}")
        stages = await self.build_stages(supplier_order.supplier_order_id, supplier_order.product_type)
        for stage in stages:
            tx.insert(COLLECTION, stage.model_dump(mode="json"))
        return stages

    # ---------- Queries ----------

    async def list_stages(self, supplier_order_id: str) -> List[ProductionStage]:
        docs = await self.store.find(COLLECTION, {"supplier_order_id": supplier_order_id}, sort=[("stage_number", 1)])
        return [ProductionStage(**d) for d in docs]

    async def progress(self, supplier_order_id: str) -> StageProgress:
        stages = await self.list_stages(supplier_order_id)
        return StageProgress(
            supplier_order_id=supplier_order_id,
            overall_progress=round(overall_progress(stages), 2),
            current_stage=current_stage(stages),
            stages=stages,
        )

    # ---------- Updates ----------

    async def update_stage(
        self,
        supplier_order_id: str,
        stage_number: int,
        completion_percentage: float,
        actor: User,
        notes: Optional[str] = None,
        photos: Optional[List[str]] = None,
    ) -> ProductionStage:
        if completion_percentage is None or not 0 <= completion_percentage <= 100:
            raise ValidationError("completion_percentage must be between 0 and 100")

        so_doc = await self.store.find_one(SUPPLIER_ORDERS, {"supplier_order_id": supplier_order_id})
        if not so_doc:
            raise NotFoundError(f"Supplier order {supplier_order_id} not found")
        supplier_order = SupplierOrder(**so_doc)

        if actor.role == Role.SUPPLIER:
            if actor.supplier_id != supplier_order.supplier_id:
                raise PermissionDeniedError("Suppliers can only update their own production stages")
        elif not actor.is_staff:
            raise PermissionDeniedError("Not authorized to update production stages")

        if supplier_order.status != SupplierOrderStatus.IN_PROGRESS:
            raise StateError(
                f"Supplier order {supplier_order_id} is {supplier_order.status.value}, stages can only change while in_progress"
            )

        stages = await self.list_stages(supplier_order_id)
        stage = next((s for s in stages if s.stage_number == stage_number), None)
        if not stage:
            raise NotFoundError(f"Stage {stage_number} not found for {supplier_order_id}")
        if completion_percentage < stage.completion_percentage:
            raise ValidationError(
                f"Stage {stage_number} is at {stage.completion_percentage}%, completion cannot decrease"
            )

        now = self.clock()
        new_status = stage.status
        if completion_percentage >= 100:
            new_status = StageStatus.COMPLETED
        elif completion_percentage > 0:
            new_status = StageStatus.IN_PROGRESS

        changes = {
            "completion_percentage": completion_percentage,
            "status": new_status.value,
            "updated_at": now.isoformat(),
        }
        if new_status != StageStatus.NOT_STARTED and stage.started_at is None:
            changes["started_at"] = now.isoformat()
        if new_status == StageStatus.COMPLETED and stage.completed_at is None:
            changes["completed_at"] = now.isoformat()
        if notes is not None:
            changes["notes"] = notes
        if photos:
            changes["photos"] = stage.photos + list(photos)

        tx = self.store.transaction()
        tx.update(COLLECTION, {"stage_id": stage.stage_id}, stage.version, changes)
        if new_status != stage.status:
            self.audit.append(
                tx, EntityType.PRODUCTION_STAGE, stage.stage_id,
                stage.status.value, new_status.value, actor,
            )

        events = [DomainEvent(
            event_type=EventType.STAGE_UPDATED,
            entity_id=stage.stage_id,
            payload={
                "supplier_order_id": supplier_order_id,
                "stage_number": stage_number,
                "stage_name": stage.stage_name,
                "completion_percentage": completion_percentage,
                "status": new_status.value,
            },
        )]

        # The supplier order completes once every stage is at 100, whichever finishes last
        others_done = all(s.status == StageStatus.COMPLETED for s in stages if s.stage_id != stage.stage_id)
        if new_status == StageStatus.COMPLETED and others_done:
            tx.update(
                SUPPLIER_ORDERS,
                {"supplier_order_id": supplier_order_id},
                supplier_order.version,
                {
                    "status": SupplierOrderStatus.COMPLETED.value,
                    "completed_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                },
            )
            self.audit.append(
                tx, EntityType.SUPPLIER_ORDER, supplier_order_id,
                supplier_order.status.value, SupplierOrderStatus.COMPLETED.value, actor,
                reason="all production stages completed",
            )
            events.append(DomainEvent(
                event_type=EventType.SUPPLIER_ORDER_TRANSITIONED,
                entity_id=supplier_order_id,
                payload={
                    "previous_status": supplier_order.status.value,
                    "status": SupplierOrderStatus.COMPLETED.value,
                    "order_id": supplier_order.order_id,
                    "batch_id": supplier_order.batch_id,
                    "supplier_id": supplier_order.supplier_id,
                },
            ))
        else:
            # Version bump serialises concurrent stage updates of one supplier order
            tx.update(
                SUPPLIER_ORDERS,
                {"supplier_order_id": supplier_order_id},
                supplier_order.version,
                {"updated_at": now.isoformat()},
            )

        try:
            await tx.commit()
        except ConflictError:
            raise StateError(f"Stage {stage_number} of {supplier_order_id} changed concurrently, reload and retry")

        self.bus.publish_all(events)
        doc = await self.store.find_one(COLLECTION, {"stage_id": stage.stage_id})
        return ProductionStage(**doc)

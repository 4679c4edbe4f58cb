"""
Audit trail, domain events and payment events
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class EntityType(str, Enum):
    ORDER = "order"
    SUPPLIER_ORDER = "supplier_order"
    PRODUCTION_STAGE = "production_stage"
    BATCH = "batch"


class AuditRecord(BaseModel):
    """Immutable record of one state change"""
    model_config = ConfigDict(extra="ignore")
    audit_id: str = Field(default_factory=lambda: f"audit_{uuid.uuid4().hex[:12]}")
    entity_type: EntityType
    entity_id: str
    previous_state: Optional[str] = None
    new_state: str
    actor_id: str
    actor_role: str
    event_id: Optional[str] = None  # Idempotency key of the triggering event
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventType(str, Enum):
    ORDER_CREATED = "order.created"
    ORDER_TRANSITIONED = "order.transitioned"
    SUPPLIER_ORDER_CREATED = "supplier_order.created"
    SUPPLIER_ORDER_TRANSITIONED = "supplier_order.transitioned"
    CAPACITY_COMMITTED = "capacity.committed"
    CAPACITY_RELEASED = "capacity.released"
    BATCH_JOINED = "batch.joined"
    BATCH_LOCKED = "batch.locked"
    BATCH_ASSIGNED = "batch.assigned"
    STAGE_UPDATED = "stage.updated"
    PAYMENT_RECORDED = "payment.recorded"


class DomainEvent(BaseModel):
    event_type: EventType
    entity_id: str
    payload: Dict[str, Any] = {}
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentType(str, Enum):
    DEPOSIT = "deposit"
    BALANCE = "balance"
    FULL = "full"


class PaymentEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")
    payment_event_id: str  # payment_ref + outcome, unique
    payment_ref: str
    outcome: PaymentOutcome
    order_id: str
    payment_type: PaymentType = PaymentType.FULL
    amount: Optional[float] = None
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PaymentWebhook(BaseModel):
    payment_ref: str
    outcome: PaymentOutcome
    order_id: str
    payment_type: PaymentType = PaymentType.FULL
    amount: Optional[float] = None


class PaymentResult(BaseModel):
    payment_event: PaymentEvent
    order_id: str
    payment_status: str
    workflow_status: str
    duplicate: bool = False  # Redelivery of an already recorded event

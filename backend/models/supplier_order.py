from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import date, datetime, timezone
from enum import Enum
import uuid


class AcceptanceStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTER_OFFERED = "counter_offered"


class SupplierOrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_SUPPLIER_STATUSES = {
    SupplierOrderStatus.COMPLETED,
    SupplierOrderStatus.REJECTED,
    SupplierOrderStatus.CANCELLED,
}

# Supplier orders that no longer hold capacity or count toward the parent order
DEAD_SUPPLIER_STATUSES = {SupplierOrderStatus.REJECTED, SupplierOrderStatus.CANCELLED}


class SupplierOrder(BaseModel):
    model_config = ConfigDict(extra="ignore")
    supplier_order_id: str = Field(default_factory=lambda: f"so_{uuid.uuid4().hex[:12]}")
    supplier_id: str
    order_id: Optional[str] = None  # Owning buyer order ...
    batch_id: Optional[str] = None  # ... or owning batch slice
    product_type: str
    quantity: int
    target_date: date
    acceptance_status: AcceptanceStatus = AcceptanceStatus.PENDING
    status: SupplierOrderStatus = SupplierOrderStatus.PENDING
    supplier_price: Optional[float] = None
    counter_offer_price: Optional[float] = None
    counter_offer_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AssignmentCreate(BaseModel):
    supplier_id: str
    quantity: int = Field(gt=0)
    target_date: date
    order_id: Optional[str] = None
    batch_id: Optional[str] = None
    supplier_price: Optional[float] = Field(default=None, gt=0)


class SupplierOrderAccept(BaseModel):
    notes: Optional[str] = None
    event_id: Optional[str] = None


class SupplierOrderReject(BaseModel):
    reason: str
    event_id: Optional[str] = None


class CounterOfferCreate(BaseModel):
    counter_price: float = Field(gt=0)
    notes: Optional[str] = None
    event_id: Optional[str] = None


class CounterOfferDecision(BaseModel):
    accept: bool
    reason: Optional[str] = None  # Mandatory when rejecting
    event_id: Optional[str] = None


class SupplierOrderCancel(BaseModel):
    reason: str
    event_id: Optional[str] = None

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import date, datetime, timezone
from enum import Enum
import uuid


class OrderStatus(str, Enum):
    """Buyer-facing workflow status"""
    QUOTE_REQUESTED = "quote_requested"
    QUOTE_SENT = "quote_sent"
    ADMIN_REVIEW = "admin_review"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_RECEIVED = "payment_received"
    ASSIGNED_TO_SUPPLIER = "assigned_to_supplier"
    SAMPLE_REQUESTED = "sample_requested"
    SAMPLE_APPROVED = "sample_approved"
    BULK_PRODUCTION = "bulk_production"
    QC_INSPECTION = "qc_inspection"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    COMPLETED = "completed"

    # Side states
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


# Main line, in order
ORDER_SEQUENCE: List[OrderStatus] = [
    OrderStatus.QUOTE_REQUESTED,
    OrderStatus.QUOTE_SENT,
    OrderStatus.ADMIN_REVIEW,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.PAYMENT_RECEIVED,
    OrderStatus.ASSIGNED_TO_SUPPLIER,
    OrderStatus.SAMPLE_REQUESTED,
    OrderStatus.SAMPLE_APPROVED,
    OrderStatus.BULK_PRODUCTION,
    OrderStatus.QC_INSPECTION,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
]

PRE_PAYMENT_STATUSES = {
    OrderStatus.QUOTE_REQUESTED,
    OrderStatus.QUOTE_SENT,
    OrderStatus.ADMIN_REVIEW,
    OrderStatus.AWAITING_PAYMENT,
}

TERMINAL_STATUSES = {OrderStatus.COMPLETED, OrderStatus.CANCELLED}


def sequence_index(status: OrderStatus) -> int:
    """Position on the main line (-1 for side states)"""
    try:
        return ORDER_SEQUENCE.index(status)
    except ValueError:
        return -1


class PaymentStatus(str, Enum):
    PENDING = "pending"
    DEPOSIT_PAID = "deposit_paid"
    PAID = "paid"
    FAILED = "failed"


PAID_STATUSES = {PaymentStatus.DEPOSIT_PAID, PaymentStatus.PAID}


class Order(BaseModel):
    model_config = ConfigDict(extra="ignore")
    order_id: str = Field(default_factory=lambda: f"ord_{uuid.uuid4().hex[:12]}")
    buyer_id: str
    product_type: str
    quantity: int
    target_date: date
    workflow_status: OrderStatus = OrderStatus.QUOTE_REQUESTED
    buyer_price: Optional[float] = None  # Per unit, base currency
    payment_status: PaymentStatus = PaymentStatus.PENDING
    invoice_id: Optional[str] = None
    batch_id: Optional[str] = None
    held_from: Optional[OrderStatus] = None  # Status to resume to after on_hold
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OrderCreate(BaseModel):
    buyer_id: Optional[str] = None  # Defaults to the calling buyer
    product_type: str
    quantity: int = Field(gt=0)
    target_date: date
    buyer_price: Optional[float] = Field(default=None, gt=0)
    invoice_id: Optional[str] = None
    notes: Optional[str] = None


class OrderTransition(BaseModel):
    target_status: OrderStatus
    event_id: Optional[str] = None  # Idempotency key (e.g. webhook delivery id)
    payment_ref: Optional[str] = None  # Required for payment_received
    reason: Optional[str] = None


class OrderCancel(BaseModel):
    reason: Optional[str] = None
    event_id: Optional[str] = None


class BuyerPriceUpdate(BaseModel):
    buyer_price: float = Field(gt=0)

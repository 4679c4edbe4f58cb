from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import List, Optional
from datetime import date, datetime, timezone
from enum import Enum
import uuid

import config
from models.pricing import PriceBreakdown


class BatchStatus(str, Enum):
    OPEN = "open"
    LOCKED = "locked"
    ASSIGNED = "assigned"


class Batch(BaseModel):
    """Shared production run filled by several small buyer orders"""
    model_config = ConfigDict(extra="ignore")
    batch_id: str = Field(default_factory=lambda: f"batch_{uuid.uuid4().hex[:8]}")
    product_category: str
    target_quantity: int
    current_quantity: int = 0
    max_styles: int
    current_style_count: int = 0
    styles: List[str] = []
    overflow_tolerance: int = 0
    unit_price_base: Optional[float] = None
    window_closes_at: datetime
    status: BatchStatus = BatchStatus.OPEN
    locked_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def fill_percentage(self) -> float:
        if self.target_quantity <= 0:
            return 0.0
        return self.current_quantity / self.target_quantity * 100

    def to_doc(self) -> dict:
        return self.model_dump(mode="json", exclude={"fill_percentage"})


class BatchContribution(BaseModel):
    model_config = ConfigDict(extra="ignore")
    contribution_id: str = Field(default_factory=lambda: f"contrib_{uuid.uuid4().hex[:12]}")
    batch_id: str
    order_id: str
    style_key: str
    quantity: int
    buyer_price_per_unit: float  # Locked at join time
    fill_percentage_at_join: float
    committed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchJoinRequest(BaseModel):
    order_id: str
    style_key: str
    base_price: float = Field(gt=0)


class BatchQuoteRequest(BaseModel):
    product_category: str
    style_key: str
    quantity: int = Field(gt=0)
    base_price: float = Field(gt=0)


class BatchAssignRequest(BaseModel):
    supplier_ids: List[str] = Field(min_length=1)
    target_date: date
    supplier_price: Optional[float] = Field(default=None, gt=0)


class BatchDefaults(BaseModel):
    """Settings for newly opened batches"""
    target_quantity: int = config.BATCH_TARGET_QUANTITY
    max_styles: int = config.BATCH_MAX_STYLES
    overflow_tolerance: int = config.BATCH_OVERFLOW_TOLERANCE
    window_days: int = config.BATCH_WINDOW_DAYS


class BatchQuote(BaseModel):
    """Price a buyer would get by joining now (nothing is reserved)"""
    batch_id: Optional[str] = None  # None when a new batch would be opened
    fill_percentage_after_join: float
    style_count_after_join: int
    pricing: PriceBreakdown


class BatchJoinResult(BaseModel):
    batch: Batch
    contribution: BatchContribution
    pricing: PriceBreakdown

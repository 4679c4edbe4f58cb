from pydantic import BaseModel, Field, ConfigDict, computed_field
from typing import List, Optional
from datetime import date, datetime, timezone
from enum import Enum
import uuid


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class Supplier(BaseModel):
    model_config = ConfigDict(extra="ignore")
    supplier_id: str = Field(default_factory=lambda: f"sup_{uuid.uuid4().hex[:12]}")
    company_name: str
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_active: bool = True
    performance_score: float = 0  # 0-100
    specializations: List[str] = []
    lead_time_days: int = 0
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SupplierCreate(BaseModel):
    supplier_id: Optional[str] = None
    company_name: str
    verification_status: VerificationStatus = VerificationStatus.PENDING
    is_active: bool = True
    performance_score: float = Field(default=0, ge=0, le=100)
    specializations: List[str] = []
    lead_time_days: int = Field(default=0, ge=0)


class CapacityRecord(BaseModel):
    """Manufacturing capacity of one supplier on one date"""
    model_config = ConfigDict(extra="ignore")
    capacity_id: str = Field(default_factory=lambda: f"cap_{uuid.uuid4().hex[:12]}")
    supplier_id: str
    date: date
    total_capacity: int
    current_utilization: int = 0
    machines_count: int = 0
    workers_count: int = 0
    shift_hours: float = 8
    version: int = 1
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @computed_field
    @property
    def available_capacity(self) -> int:
        # Always derived, never stored as a settable field
        return self.total_capacity - self.current_utilization

    def to_doc(self) -> dict:
        return self.model_dump(mode="json", exclude={"available_capacity"})


class CapacityUpdate(BaseModel):
    supplier_id: str
    date: date
    total_capacity: int = Field(ge=0)
    machines_count: int = 0
    workers_count: int = 0
    shift_hours: float = 8


class CapacityLog(BaseModel):
    """Immutable record of one utilization change"""
    model_config = ConfigDict(extra="ignore")
    log_id: str = Field(default_factory=lambda: f"caplog_{uuid.uuid4().hex[:12]}")
    supplier_id: str
    date: date
    delta: int  # + commit, - release
    utilization_after: int
    supplier_order_id: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MatchRequest(BaseModel):
    quantity: int = Field(gt=0)
    target_date: date
    specialization: Optional[str] = None
    exclude_supplier_ids: List[str] = []
    include_advisory: bool = False


class SupplierMatch(BaseModel):
    supplier_id: str
    company_name: str
    score: float
    available_capacity: int
    total_capacity: int
    performance_score: float
    specialization_match: float
    leadtime_fit: float
    capacity_headroom_ratio: float
    # Advisory output only, never used for ranking
    reasoning: Optional[str] = None
    advisory_confidence: Optional[float] = None

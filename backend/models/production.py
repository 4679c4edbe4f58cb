from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum
import uuid


class StageStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ProductionStage(BaseModel):
    model_config = ConfigDict(extra="ignore")
    stage_id: str = Field(default_factory=lambda: f"stage_{uuid.uuid4().hex[:8]}")
    supplier_order_id: str
    stage_number: int  # Contiguous from 1 within a supplier order
    stage_name: str
    description: str = ""
    completion_percentage: float = 0
    status: StageStatus = StageStatus.NOT_STARTED
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    target_date: Optional[datetime] = None
    notes: Optional[str] = None
    photos: List[str] = []
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StageTemplate(BaseModel):
    model_config = ConfigDict(extra="ignore")
    template_id: str = Field(default_factory=lambda: f"tmpl_{uuid.uuid4().hex[:8]}")
    product_category: str
    stage_number: int
    stage_name: str
    description: str = ""
    estimated_days: int = 0
    active: bool = True
    version: int = 1


class StageTemplateCreate(BaseModel):
    product_category: str
    stage_number: int = Field(ge=1)
    stage_name: str
    description: str = ""
    estimated_days: int = Field(default=0, ge=0)
    active: bool = True


class StageUpdate(BaseModel):
    completion_percentage: float = Field(ge=0, le=100)
    notes: Optional[str] = None
    photos: List[str] = []


class StageProgress(BaseModel):
    supplier_order_id: str
    overall_progress: float
    current_stage: Optional[ProductionStage] = None
    stages: List[ProductionStage] = []

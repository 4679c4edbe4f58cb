from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import uuid


class QueuedSubmission(BaseModel):
    """Submission waiting to be forwarded to an upstream endpoint"""
    model_config = ConfigDict(extra="ignore")
    submission_id: str = Field(default_factory=lambda: f"sub_{uuid.uuid4().hex[:12]}")
    kind: str = "generic"  # contact, quote, order, generic
    endpoint: str
    method: str = "POST"  # POST, PUT, PATCH
    data: Dict[str, Any] = {}
    retries: int = 0
    status: str = "queued"  # queued, failed
    last_error: Optional[str] = None
    next_attempt_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: int = 1
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SubmissionCreate(BaseModel):
    kind: str = "generic"
    endpoint: str
    method: str = "POST"
    data: Dict[str, Any] = {}

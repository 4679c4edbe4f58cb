from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    BUYER = "buyer"
    SUPPLIER = "supplier"
    SYSTEM = "system"


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    email: str = ""
    name: str = ""
    role: Role = Role.BUYER
    supplier_id: Optional[str] = None  # Set for supplier users
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_staff(self) -> bool:
        """Admins and the automated system actor"""
        return self.role in (Role.ADMIN, Role.SYSTEM)


class UserSession(BaseModel):
    model_config = ConfigDict(extra="ignore")
    user_id: str
    session_token: str
    expires_at: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# Actor used by webhooks, scheduled jobs and automated rules
SYSTEM_ACTOR = User(user_id="system", email="system@localhost", name="System", role=Role.SYSTEM)

from fastapi import HTTPException, Request
from datetime import datetime, timezone
from typing import Optional

from models.user import User
from services.container import Services

_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide service container over the configured store"""
    global _services
    if _services is None:
        from database import store
        _services = Services(store)
    return _services


def set_services(services: Optional[Services]):
    """Swap the container (tests run against an in-memory store)"""
    global _services
    _services = services


async def get_current_user(request: Request) -> User:
    """Get current user from session token in cookie or header"""
    session_token = request.cookies.get("session_token")
    if not session_token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            session_token = auth_header.split(" ")[1]

    if not session_token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    store = get_services().store
    session_doc = await store.find_one("user_sessions", {"session_token": session_token})

    if not session_doc:
        raise HTTPException(status_code=401, detail="Invalid session")

    # Check expiry
    expires_at = session_doc.get("expires_at")
    if isinstance(expires_at, str):
        expires_at = datetime.fromisoformat(expires_at)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at < datetime.now(timezone.utc):
        raise HTTPException(status_code=401, detail="Session expired")

    user_doc = await store.find_one("users", {"user_id": session_doc["user_id"]})

    if not user_doc:
        raise HTTPException(status_code=401, detail="User not found")

    return User(**user_doc)


def require_staff(user: User):
    if not user.is_staff:
        raise HTTPException(status_code=403, detail="Admin access required")

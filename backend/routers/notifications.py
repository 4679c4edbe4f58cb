"""
Notifications Router
In-app notifications raised by order, supplier order and batch events
"""
from fastapi import APIRouter, HTTPException, Depends, Query

from models.user import User
from dependencies import get_current_user, get_services
from services.container import Services

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def get_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get user's notifications"""
    notifications = await services.notifications.list_for_user(user.user_id, unread_only, limit)
    unread_count = len([n for n in notifications if not n.get("is_read")])
    return {
        "notifications": notifications,
        "unread_count": unread_count
    }


@router.put("/{notification_id}/read")
async def mark_as_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Mark a notification as read"""
    if not await services.notifications.mark_read(notification_id, user.user_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}

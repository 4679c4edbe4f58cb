from fastapi import APIRouter, Depends

from models.user import User
from models.sync import SubmissionCreate
from dependencies import get_current_user, get_services, require_staff
from services.container import Services

router = APIRouter(prefix="/sync-queue", tags=["sync-queue"])


@router.get("")
async def get_queue(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Queued and failed submissions"""
    require_staff(user)
    pending = await services.sync_queue.pending()
    failed = await services.sync_queue.failed()
    return {"pending": pending, "failed": failed, "pending_count": len(pending)}


@router.post("")
async def enqueue_submission(
    data: SubmissionCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Queue a submission for delivery"""
    return await services.sync_queue.enqueue(data)


@router.post("/process")
async def process_queue(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Send every due submission now"""
    require_staff(user)
    return await services.sync_queue.process_all()


@router.delete("")
async def clear_queue(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Drop all queued submissions"""
    require_staff(user)
    cleared = await services.sync_queue.clear()
    return {"success": True, "cleared": cleared}

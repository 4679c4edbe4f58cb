from fastapi import APIRouter, Depends
from typing import Optional

from models.user import User
from models.batch import BatchAssignRequest, BatchJoinRequest, BatchQuoteRequest, BatchStatus
from dependencies import get_current_user, get_services, require_staff
from services.container import Services

router = APIRouter(prefix="/batches", tags=["batches"])


@router.get("")
async def get_batches(
    status: Optional[BatchStatus] = None,
    product_category: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get production batches"""
    return await services.batches.list(status=status, product_category=product_category)


@router.post("/quote")
async def quote_batch_join(
    data: BatchQuoteRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Preview the price of joining a batch"""
    return await services.batches.quote_join(data)


@router.post("/join")
async def join_batch(
    data: BatchJoinRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Add an order to an open batch (opens a new batch when none fits)"""
    return await services.batches.join_batch(data.order_id, data.style_key, data.base_price, user)


@router.post("/lock-expired")
async def lock_expired_batches(
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Lock every open batch whose window has closed"""
    require_staff(user)
    locked = await services.batches.lock_expired()
    return {"locked": [b.batch_id for b in locked], "count": len(locked)}


@router.get("/{batch_id}")
async def get_batch(
    batch_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get a batch with its contributions"""
    batch = await services.batches.get(batch_id)
    contributions = await services.batches.contributions(batch_id) if user.is_staff else []
    return {"batch": batch, "contributions": contributions}


@router.post("/{batch_id}/lock")
async def lock_batch(
    batch_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Close a batch to new contributions"""
    return await services.batches.lock_batch(batch_id, user)


@router.post("/{batch_id}/assign")
async def assign_batch(
    batch_id: str,
    data: BatchAssignRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Split a locked batch across suppliers"""
    supplier_orders = await services.batches.assign_batch(batch_id, data, user)
    return {"batch_id": batch_id, "supplier_orders": supplier_orders}


@router.get("/{batch_id}/history")
async def get_batch_history(
    batch_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Audit trail of a batch"""
    require_staff(user)
    return await services.batches.history(batch_id)

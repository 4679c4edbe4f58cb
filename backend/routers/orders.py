from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.user import Role, User
from models.order import (
    Order, OrderCreate, OrderTransition, OrderCancel, BuyerPriceUpdate, OrderStatus,
)
from dependencies import get_current_user, get_services
from services.container import Services

router = APIRouter(prefix="/orders", tags=["orders"])


def ensure_visible(order: Order, user: User):
    if user.is_staff:
        return
    if user.role == Role.BUYER and order.buyer_id == user.user_id:
        return
    raise HTTPException(status_code=403, detail="Not authorized to view this order")


@router.get("")
async def get_orders(
    status: Optional[OrderStatus] = None,
    buyer_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get orders - buyers only see their own"""
    if user.role == Role.BUYER:
        buyer_id = user.user_id
    elif not user.is_staff:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await services.orders.list_orders(buyer_id=buyer_id, status=status)


@router.post("")
async def create_order(
    data: OrderCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Create an order from an accepted quote"""
    return await services.orders.create_order(data, user)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get a single order"""
    order = await services.orders.get_order(order_id)
    ensure_visible(order, user)
    return order


@router.post("/{order_id}/transition")
async def transition_order(
    order_id: str,
    data: OrderTransition,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Move an order to its next workflow status"""
    return await services.orders.transition(
        order_id, data.target_status, user,
        event_id=data.event_id, payment_ref=data.payment_ref, reason=data.reason,
    )


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    data: OrderCancel,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Cancel an order (buyers: own orders, before payment only)"""
    return await services.orders.cancel(order_id, user, reason=data.reason, event_id=data.event_id)


@router.post("/{order_id}/hold")
async def hold_order(
    order_id: str,
    data: OrderCancel,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Put an order on hold"""
    return await services.orders.hold(order_id, user, reason=data.reason, event_id=data.event_id)


@router.post("/{order_id}/resume")
async def resume_order(
    order_id: str,
    event_id: Optional[str] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Resume an on-hold order to the status it was held from"""
    return await services.orders.resume(order_id, user, event_id=event_id)


@router.put("/{order_id}/price")
async def update_order_price(
    order_id: str,
    data: BuyerPriceUpdate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Change the per-unit buyer price (until payment)"""
    return await services.orders.update_buyer_price(order_id, data.buyer_price, user)


@router.get("/{order_id}/history")
async def get_order_history(
    order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Audit trail of an order's status changes"""
    ensure_visible(await services.orders.get_order(order_id), user)
    return await services.orders.history(order_id)


@router.get("/{order_id}/supplier-orders")
async def get_order_supplier_orders(
    order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Supplier orders fulfilling this order"""
    order = await services.orders.get_order(order_id)
    ensure_visible(order, user)
    return await services.orders.supplier_orders_for(order)


@router.get("/{order_id}/progress")
async def get_order_progress(
    order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Mean production progress across the order's supplier orders"""
    order = await services.orders.get_order(order_id)
    ensure_visible(order, user)
    progress = await services.orders.order_progress(order_id, services.tracker)
    return {"order_id": order_id, "workflow_status": order.workflow_status, "overall_progress": progress}

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.user import Role, User
from models.supplier_order import (
    AcceptanceStatus, AssignmentCreate, CounterOfferCreate, CounterOfferDecision,
    SupplierOrder, SupplierOrderAccept, SupplierOrderCancel, SupplierOrderReject,
)
from dependencies import get_current_user, get_services
from services.container import Services

router = APIRouter(prefix="/supplier-orders", tags=["supplier-orders"])


def ensure_visible(supplier_order: SupplierOrder, user: User):
    if user.is_staff:
        return
    if user.role == Role.SUPPLIER and supplier_order.supplier_id == user.supplier_id:
        return
    raise HTTPException(status_code=403, detail="Not authorized to view this supplier order")


@router.get("")
async def get_supplier_orders(
    supplier_id: Optional[str] = None,
    order_id: Optional[str] = None,
    batch_id: Optional[str] = None,
    acceptance_status: Optional[AcceptanceStatus] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get supplier orders - suppliers only see their own"""
    if user.role == Role.SUPPLIER:
        supplier_id = user.supplier_id
    elif not user.is_staff:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await services.supplier_orders.list(
        supplier_id=supplier_id, order_id=order_id, batch_id=batch_id, acceptance_status=acceptance_status,
    )


@router.post("")
async def create_assignment(
    data: AssignmentCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Commit capacity and create a supplier order (admin only)"""
    return await services.assignments.commit_assignment(data, user)


@router.get("/{supplier_order_id}")
async def get_supplier_order(
    supplier_order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Get a single supplier order"""
    supplier_order = await services.supplier_orders.get(supplier_order_id)
    ensure_visible(supplier_order, user)
    return supplier_order


@router.post("/{supplier_order_id}/accept")
async def accept_supplier_order(
    supplier_order_id: str,
    data: SupplierOrderAccept,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Accept a pending supplier order"""
    return await services.supplier_orders.accept(supplier_order_id, user, notes=data.notes, event_id=data.event_id)


@router.post("/{supplier_order_id}/reject")
async def reject_supplier_order(
    supplier_order_id: str,
    data: SupplierOrderReject,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Reject a pending supplier order (reason required)"""
    return await services.supplier_orders.reject(supplier_order_id, user, data.reason, event_id=data.event_id)


@router.post("/{supplier_order_id}/counter-offer")
async def counter_offer_supplier_order(
    supplier_order_id: str,
    data: CounterOfferCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Propose a different price for a pending supplier order"""
    return await services.supplier_orders.counter_offer(
        supplier_order_id, user, data.counter_price, notes=data.notes, event_id=data.event_id,
    )


@router.post("/{supplier_order_id}/counter-offer/decision")
async def decide_counter_offer(
    supplier_order_id: str,
    data: CounterOfferDecision,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Accept or reject a supplier's counter offer (admin only)"""
    return await services.supplier_orders.resolve_counter_offer(
        supplier_order_id, user, data.accept, reason=data.reason, event_id=data.event_id,
    )


@router.post("/{supplier_order_id}/cancel")
async def cancel_supplier_order(
    supplier_order_id: str,
    data: SupplierOrderCancel,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Cancel a supplier order and release its capacity"""
    return await services.supplier_orders.cancel(supplier_order_id, user, data.reason, event_id=data.event_id)


@router.get("/{supplier_order_id}/history")
async def get_supplier_order_history(
    supplier_order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Audit trail of a supplier order"""
    ensure_visible(await services.supplier_orders.get(supplier_order_id), user)
    return await services.supplier_orders.history(supplier_order_id)

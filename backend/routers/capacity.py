from fastapi import APIRouter, HTTPException, Depends, Query
from datetime import date
from typing import Optional

from models.user import Role, User
from models.capacity import CapacityUpdate, MatchRequest, SupplierCreate
from dependencies import get_current_user, get_services, require_staff
from services.container import Services

router = APIRouter(prefix="/capacity", tags=["capacity"])


def ensure_supplier_access(supplier_id: str, user: User):
    if user.is_staff:
        return
    if user.role == Role.SUPPLIER and user.supplier_id == supplier_id:
        return
    raise HTTPException(status_code=403, detail="Not authorized for this supplier")


# ============== Suppliers ==============

@router.get("/suppliers")
async def get_suppliers(
    verified_only: bool = False,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """List suppliers (admin only)"""
    require_staff(user)
    return await services.suppliers.list(verified_only=verified_only)


@router.post("/suppliers")
async def save_supplier(
    data: SupplierCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Create or update a supplier profile (admin only)"""
    require_staff(user)
    return await services.suppliers.save(data)


# ============== Capacity records ==============

@router.get("/records/{supplier_id}")
async def get_capacity_records(
    supplier_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Capacity calendar of a supplier"""
    ensure_supplier_access(supplier_id, user)
    return await services.ledger.list_for_supplier(supplier_id, start, end)


@router.put("/records")
async def set_capacity(
    data: CapacityUpdate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Set total capacity for a supplier on a date"""
    ensure_supplier_access(data.supplier_id, user)
    return await services.ledger.set_capacity(data)


@router.get("/logs/{supplier_id}")
async def get_utilization_logs(
    supplier_id: str,
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Capacity commits and releases over the last N days"""
    ensure_supplier_access(supplier_id, user)
    return await services.ledger.utilization_logs(supplier_id, days)


# ============== Matching ==============

@router.post("/match")
async def match_suppliers(
    data: MatchRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Rank suppliers able to take a quantity on a date (reserves nothing)"""
    require_staff(user)
    matches = await services.matcher.rank(
        data.quantity, data.target_date, data.specialization, data.exclude_supplier_ids,
    )
    if data.include_advisory:
        matches = await services.advisory.annotate(matches, data.quantity, data.target_date, data.specialization)
    return {"matches": matches, "count": len(matches)}

from fastapi import APIRouter, HTTPException, Depends

from models.user import Role, User
from models.production import StageTemplateCreate, StageUpdate
from dependencies import get_current_user, get_services, require_staff
from services.container import Services
from services.production_tracker import category_for_product

router = APIRouter(prefix="/stages", tags=["stages"])


@router.get("/templates/{product_type}")
async def get_stage_templates(
    product_type: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Active stage templates for a product type or category"""
    category = category_for_product(product_type)
    templates = await services.tracker.templates_for(category)
    return {"product_category": category, "templates": templates}


@router.post("/templates")
async def create_stage_template(
    data: StageTemplateCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Add a stage template (admin only)"""
    require_staff(user)
    return await services.tracker.save_template(data)


@router.get("/{supplier_order_id}")
async def get_production_stages(
    supplier_order_id: str,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Stages of a supplier order with overall progress"""
    supplier_order = await services.supplier_orders.get(supplier_order_id)
    if not user.is_staff and not (user.role == Role.SUPPLIER and user.supplier_id == supplier_order.supplier_id):
        raise HTTPException(status_code=403, detail="Not authorized")
    return await services.tracker.progress(supplier_order_id)


@router.put("/{supplier_order_id}/{stage_number}")
async def update_production_stage(
    supplier_order_id: str,
    stage_number: int,
    data: StageUpdate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Report progress on one stage"""
    return await services.tracker.update_stage(
        supplier_order_id, stage_number, data.completion_percentage, user,
        notes=data.notes, photos=data.photos,
    )

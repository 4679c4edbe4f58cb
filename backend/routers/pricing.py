from fastapi import APIRouter, Depends

from models.user import User
from models.pricing import PricingRequest, PricingRules
from dependencies import get_current_user, get_services
from services.container import Services
from services.pricing_engine import calculate_price

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.get("/rules")
async def get_pricing_rules(user: User = Depends(get_current_user)):
    """Current pricing constants"""
    return PricingRules()


@router.post("/calculate")
async def calculate_batch_price(
    data: PricingRequest,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Buyer price and savings for a batch position"""
    return calculate_price(
        data.base_price,
        data.quantity,
        data.style_count_in_batch,
        data.fill_percentage,
        services.batches.rules,
    )

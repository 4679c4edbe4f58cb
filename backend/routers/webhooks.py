"""
Webhook handlers for payment gateway notifications
"""
from fastapi import APIRouter, HTTPException, Request, Header, Depends
from pydantic import ValidationError as PayloadValidationError
from typing import Optional
import logging

import config
from models.audit import PaymentWebhook
from dependencies import get_services
from services.container import Services
from services.payments import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/payments")
async def payment_webhook(
    request: Request,
    x_payment_signature: Optional[str] = Header(None),
    services: Services = Depends(get_services)
):
    """Handle a payment succeeded/failed notification"""
    body = await request.body()

    # Verify webhook signature
    if config.PAYMENT_WEBHOOK_SECRET:
        if not verify_signature(body, x_payment_signature, config.PAYMENT_WEBHOOK_SECRET):
            raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = PaymentWebhook.model_validate_json(body)
    except PayloadValidationError as e:
        logger.warning(f"Rejected malformed payment webhook: {e}")
        raise HTTPException(status_code=400, detail="Invalid payment payload")

    result = await services.payments.record_payment_event(
        event.payment_ref,
        event.outcome,
        event.order_id,
        payment_type=event.payment_type,
        amount=event.amount,
    )
    return {"success": True, **result.model_dump(mode="json")}

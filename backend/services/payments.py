"""
Payment notifier - records payment outcomes pushed by the payment gateway

Each (payment_ref, outcome) pair is recorded once; redeliveries are no-ops.
A successful payment for an order awaiting payment moves it to
payment_received in the same transaction as the payment record.
"""
import base64
import hashlib
import hmac
import logging
from typing import Optional

import config
from models.audit import (
    DomainEvent, EventType, PaymentEvent, PaymentOutcome, PaymentResult, PaymentType,
)
from models.order import OrderStatus, PaymentStatus
from models.user import SYSTEM_ACTOR
from services.errors import ConflictError, NotFoundError, ValidationError
from services.event_bus import EventBus
from services.order_state_machine import OrderStateMachine
from services.store import Store, run_with_retry

logger = logging.getLogger(__name__)

COLLECTION = "payment_events"


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """HMAC-SHA256 of the raw body, base64 encoded"""
    if not secret:
        return True  # Verification disabled when no secret is configured
    if not signature:
        return False
    computed = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
    return hmac.compare_digest(computed, signature)


def payment_event_id(payment_ref: str, outcome: PaymentOutcome) -> str:
    return f"{payment_ref}_{outcome.value}"


def next_payment_status(current: PaymentStatus, outcome: PaymentOutcome, payment_type: PaymentType) -> PaymentStatus:
    if outcome == PaymentOutcome.FAILED:
        # A failed balance charge does not undo a deposit that already cleared
        if current in (PaymentStatus.DEPOSIT_PAID, PaymentStatus.PAID):
            return current
        return PaymentStatus.FAILED
    if payment_type == PaymentType.DEPOSIT:
        return PaymentStatus.PAID if current == PaymentStatus.PAID else PaymentStatus.DEPOSIT_PAID
    return PaymentStatus.PAID


class PaymentService:
    def __init__(self, store: Store, orders: OrderStateMachine, bus: EventBus,
                 max_attempts: int = config.MAX_COMMIT_ATTEMPTS):
        self.store = store
        self.orders = orders
        self.bus = bus
        self.max_attempts = max_attempts

    async def get_event(self, payment_ref: str, outcome: PaymentOutcome) -> Optional[PaymentEvent]:
        doc = await self.store.find_one(COLLECTION, {"payment_event_id": payment_event_id(payment_ref, outcome)})
        return PaymentEvent(**doc) if doc else None

    async def record_payment_event(
        self,
        payment_ref: str,
        outcome: PaymentOutcome,
        order_id: str,
        payment_type: PaymentType = PaymentType.FULL,
        amount: Optional[float] = None,
    ) -> PaymentResult:
        if not payment_ref or not payment_ref.strip():
            raise ValidationError("payment_ref is required")
        if amount is not None and amount < 0:
            raise ValidationError("amount cannot be negative")

        async def attempt():
            existing = await self.get_event(payment_ref, outcome)
            order = await self.orders.get_order(order_id)
            if existing:
                return existing, order, True, []
            if order.workflow_status == OrderStatus.CANCELLED and outcome == PaymentOutcome.SUCCEEDED:
                logger.warning(f"Payment {payment_ref} succeeded for cancelled order {order_id}, recording only")

            event = PaymentEvent(
                payment_event_id=payment_event_id(payment_ref, outcome),
                payment_ref=payment_ref,
                outcome=outcome,
                order_id=order_id,
                payment_type=payment_type,
                amount=amount,
            )
            payment_status = next_payment_status(order.payment_status, outcome, payment_type)

            tx = self.store.transaction()
            tx.insert(COLLECTION, event.model_dump(mode="json"))
            events = []
            if outcome == PaymentOutcome.SUCCEEDED and order.workflow_status == OrderStatus.AWAITING_PAYMENT:
                order, transitioned = self.orders.stage_transition(
                    tx, order, OrderStatus.PAYMENT_RECEIVED, SYSTEM_ACTOR,
                    event_id=payment_ref, reason=f"{payment_type.value} payment confirmed",
                    extra_changes={"payment_status": payment_status.value},
                )
                events.append(transitioned)
            else:
                tx.update("orders", {"order_id": order_id}, order.version, {"payment_status": payment_status.value})
                order = order.model_copy(update={"payment_status": payment_status, "version": order.version + 1})

            try:
                await tx.commit()
            except ConflictError:
                # A concurrent delivery of the same event may have won
                existing = await self.get_event(payment_ref, outcome)
                if existing:
                    return existing, await self.orders.get_order(order_id), True, []
                raise
            return event, order, False, events

        try:
            event, order, duplicate, events = await run_with_retry(
                attempt, self.max_attempts, "record_payment_event"
            )
        except NotFoundError:
            logger.error(f"Payment {payment_ref} references unknown order {order_id}")
            raise

        if duplicate:
            logger.info(f"Payment event {payment_ref}/{outcome.value} already recorded, skipping")
        else:
            events.insert(0, DomainEvent(
                event_type=EventType.PAYMENT_RECORDED,
                entity_id=order_id,
                payload={
                    "payment_ref": payment_ref,
                    "outcome": outcome.value,
                    "payment_type": payment_type.value,
                    "amount": amount,
                    "payment_status": order.payment_status.value,
                },
            ))
            self.bus.publish_all(events)
            logger.info(f"Payment {payment_ref} {outcome.value} for order {order_id}: {order.payment_status.value}")

        return PaymentResult(
            payment_event=event,
            order_id=order_id,
            payment_status=order.payment_status.value,
            workflow_status=order.workflow_status.value,
            duplicate=duplicate,
        )

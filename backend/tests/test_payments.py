"""
Payment notification tests
"""
import base64
import hashlib
import hmac

import pytest

from models.audit import EntityType, EventType, PaymentOutcome, PaymentType
from models.order import OrderStatus, PaymentStatus
from services.errors import NotFoundError, ValidationError
from services.payments import next_payment_status, payment_event_id, verify_signature


def sign(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


class TestSignature:
    def test_valid_signature(self):
        body = b'{"payment_ref": "pay_1"}'
        assert verify_signature(body, sign(body, "whsec"), "whsec")

    def test_tampered_body(self):
        signature = sign(b'{"amount": 10}', "whsec")
        assert not verify_signature(b'{"amount": 99}', signature, "whsec")

    def test_missing_signature(self):
        assert not verify_signature(b"{}", None, "whsec")

    def test_disabled_without_secret(self):
        assert verify_signature(b"{}", None, "")


class TestStatusRules:
    def test_status_table(self):
        assert next_payment_status(PaymentStatus.PENDING, PaymentOutcome.SUCCEEDED, PaymentType.FULL) == PaymentStatus.PAID
        assert next_payment_status(PaymentStatus.PENDING, PaymentOutcome.SUCCEEDED, PaymentType.DEPOSIT) == PaymentStatus.DEPOSIT_PAID
        assert next_payment_status(PaymentStatus.DEPOSIT_PAID, PaymentOutcome.SUCCEEDED, PaymentType.BALANCE) == PaymentStatus.PAID
        assert next_payment_status(PaymentStatus.PENDING, PaymentOutcome.FAILED, PaymentType.FULL) == PaymentStatus.FAILED
        assert next_payment_status(PaymentStatus.DEPOSIT_PAID, PaymentOutcome.FAILED, PaymentType.BALANCE) == PaymentStatus.DEPOSIT_PAID
        assert next_payment_status(PaymentStatus.FAILED, PaymentOutcome.SUCCEEDED, PaymentType.FULL) == PaymentStatus.PAID

    def test_event_id(self):
        assert payment_event_id("pay_1", PaymentOutcome.FAILED) == "pay_1_failed"


class TestRecordPayment:
    async def test_success_moves_order_to_payment_received(self, services, seed):
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        result = await services.payments.record_payment_event(
            "pay_100", PaymentOutcome.SUCCEEDED, order.order_id, PaymentType.FULL, 600.0
        )
        assert result.duplicate is False
        assert result.payment_status == "paid"
        assert result.workflow_status == "payment_received"

        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.PAYMENT_RECEIVED
        assert order.payment_status == PaymentStatus.PAID

        history = await services.orders.history(order.order_id)
        assert history[-1].actor_id == "system"
        assert history[-1].event_id == "pay_100"

    async def test_redelivery_is_a_no_op(self, services, seed):
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        await services.payments.record_payment_event("pay_200", PaymentOutcome.SUCCEEDED, order.order_id)
        before = await services.orders.get_order(order.order_id)
        history_before = await services.orders.history(order.order_id)

        result = await services.payments.record_payment_event("pay_200", PaymentOutcome.SUCCEEDED, order.order_id)
        assert result.duplicate is True
        assert result.workflow_status == "payment_received"

        after = await services.orders.get_order(order.order_id)
        assert after.version == before.version
        assert len(await services.orders.history(order.order_id)) == len(history_before)
        assert await services.store.find("payment_events", {"payment_ref": "pay_200"}) != []

    async def test_deposit(self, services, seed):
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        result = await services.payments.record_payment_event(
            "pay_dep", PaymentOutcome.SUCCEEDED, order.order_id, PaymentType.DEPOSIT, 300.0
        )
        assert result.payment_status == "deposit_paid"
        assert result.workflow_status == "payment_received"

    async def test_failure_keeps_order_waiting(self, services, seed):
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        result = await services.payments.record_payment_event("pay_300", PaymentOutcome.FAILED, order.order_id)
        assert result.payment_status == "failed"
        assert result.workflow_status == "awaiting_payment"

        # The same reference can still succeed later
        result = await services.payments.record_payment_event("pay_300", PaymentOutcome.SUCCEEDED, order.order_id)
        assert result.duplicate is False
        assert result.payment_status == "paid"
        assert result.workflow_status == "payment_received"

    async def test_failed_balance_keeps_deposit(self, services, seed):
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        await services.payments.record_payment_event(
            "pay_dep", PaymentOutcome.SUCCEEDED, order.order_id, PaymentType.DEPOSIT, 300.0
        )
        result = await services.payments.record_payment_event(
            "pay_bal", PaymentOutcome.FAILED, order.order_id, PaymentType.BALANCE, 300.0
        )
        assert result.payment_status == "deposit_paid"
        assert result.workflow_status == "payment_received"

    async def test_unknown_order(self, services):
        with pytest.raises(NotFoundError):
            await services.payments.record_payment_event("pay_400", PaymentOutcome.SUCCEEDED, "ord_missing")
        assert await services.payments.get_event("pay_400", PaymentOutcome.SUCCEEDED) is None

    async def test_payment_ref_required(self, services, seed):
        order = await seed.order()
        with pytest.raises(ValidationError):
            await services.payments.record_payment_event(" ", PaymentOutcome.SUCCEEDED, order.order_id)

    async def test_payment_before_awaiting_only_updates_status(self, services, seed):
        order = await seed.order(status=OrderStatus.QUOTE_SENT)
        result = await services.payments.record_payment_event("pay_500", PaymentOutcome.SUCCEEDED, order.order_id)
        assert result.workflow_status == "quote_sent"
        assert result.payment_status == "paid"
        audit = await services.audit.find_event(EntityType.ORDER, order.order_id, "pay_500")
        assert audit is None

    async def test_payment_recorded_event_published(self, services, seed):
        seen = []

        async def capture(event):
            seen.append(event)

        services.bus.subscribe(EventType.PAYMENT_RECORDED, capture)
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        await services.payments.record_payment_event("pay_600", PaymentOutcome.SUCCEEDED, order.order_id)
        await services.bus.drain()

        assert [e.payload["payment_ref"] for e in seen] == ["pay_600"]
        assert seen[0].entity_id == order.order_id

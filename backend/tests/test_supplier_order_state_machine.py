"""
Supplier order workflow tests
- Acceptance forwards the parent order
- Rejection / cancellation release capacity
- Counter offers wait for an admin decision
"""
import pytest

from conftest import ADMIN, BUYER, SUPPLIER_USER, TARGET_DATE
from models.order import OrderStatus
from models.supplier_order import AcceptanceStatus, SupplierOrderStatus
from models.user import Role, SYSTEM_ACTOR, User
from services.errors import PermissionDeniedError, StateError, ValidationError
from services.supplier_order_state_machine import state_label

BETA_USER = User(user_id="user_beta", email="beta@example.com", name="Beta", role=Role.SUPPLIER, supplier_id="sup_beta")


async def paid_order_with_assignment(seed, quantity=50):
    await seed.supplier()
    order = await seed.order(quantity=quantity, status=OrderStatus.PAYMENT_RECEIVED)
    supplier_order = await seed.assignment(order_id=order.order_id, quantity=quantity)
    return order, supplier_order


class TestAccept:
    async def test_accept_starts_production_and_forwards_order(self, services, seed):
        order, supplier_order = await paid_order_with_assignment(seed)

        accepted = await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)
        assert accepted.acceptance_status == AcceptanceStatus.ACCEPTED
        assert accepted.status == SupplierOrderStatus.IN_PROGRESS
        assert accepted.accepted_at is not None

        stages = await services.tracker.list_stages(supplier_order.supplier_order_id)
        assert [s.stage_number for s in stages] == [1, 2, 3, 4, 5]

        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.BULK_PRODUCTION
        history = await services.orders.history(order.order_id)
        assert [h.new_state for h in history][-2:] == ["assigned_to_supplier", "bulk_production"]

    async def test_split_order_waits_for_every_supplier(self, services, seed):
        await seed.supplier("sup_alpha")
        await seed.supplier("sup_beta")
        order = await seed.order(quantity=60, status=OrderStatus.PAYMENT_RECEIVED)
        first = await seed.assignment(order_id=order.order_id, supplier_id="sup_alpha", quantity=30)
        second = await seed.assignment(order_id=order.order_id, supplier_id="sup_beta", quantity=30)

        await services.supplier_orders.accept(first.supplier_order_id, SUPPLIER_USER)
        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.ASSIGNED_TO_SUPPLIER

        await services.supplier_orders.accept(second.supplier_order_id, BETA_USER)
        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.BULK_PRODUCTION

    async def test_rejected_sibling_does_not_block_bulk_production(self, services, seed):
        await seed.supplier("sup_alpha")
        await seed.supplier("sup_beta")
        order = await seed.order(quantity=60, status=OrderStatus.PAYMENT_RECEIVED)
        first = await seed.assignment(order_id=order.order_id, supplier_id="sup_alpha", quantity=30)
        second = await seed.assignment(order_id=order.order_id, supplier_id="sup_beta", quantity=30)

        await services.supplier_orders.reject(second.supplier_order_id, BETA_USER, "No fabric")
        await services.supplier_orders.accept(first.supplier_order_id, SUPPLIER_USER)

        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.BULK_PRODUCTION

    async def test_unpaid_order_is_not_forwarded(self, services, seed):
        await seed.supplier()
        order = await seed.order(status=OrderStatus.AWAITING_PAYMENT)
        supplier_order = await seed.assignment(order_id=order.order_id)

        await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)
        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.AWAITING_PAYMENT

    async def test_admin_can_accept_on_behalf(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        accepted = await services.supplier_orders.accept(supplier_order.supplier_order_id, ADMIN)
        assert accepted.status == SupplierOrderStatus.IN_PROGRESS

    async def test_only_assigned_supplier(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.accept(supplier_order.supplier_order_id, BETA_USER)
        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.accept(supplier_order.supplier_order_id, BUYER)

    async def test_accept_twice(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)
        with pytest.raises(StateError):
            await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)

    async def test_replayed_accept_event(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        first = await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER, event_id="evt-9")
        second = await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER, event_id="evt-9")
        assert first.version == second.version

        history = await services.supplier_orders.history(supplier_order.supplier_order_id)
        assert [(h.previous_state, h.new_state) for h in history] == [
            (None, "pending"),
            ("pending", "in_progress"),
        ]


class TestReject:
    async def test_reason_required(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        with pytest.raises(ValidationError):
            await services.supplier_orders.reject(supplier_order.supplier_order_id, SUPPLIER_USER, "  ")

    async def test_reject_releases_capacity(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed, quantity=40)
        rejected = await services.supplier_orders.reject(
            supplier_order.supplier_order_id, SUPPLIER_USER, "Line is down"
        )
        assert rejected.status == SupplierOrderStatus.REJECTED
        assert rejected.acceptance_status == AcceptanceStatus.REJECTED
        assert rejected.rejection_reason == "Line is down"

        record = await services.ledger.get("sup_alpha", TARGET_DATE)
        assert record.available_capacity == 100

    async def test_cannot_reject_after_accept(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)
        with pytest.raises(StateError):
            await services.supplier_orders.reject(supplier_order.supplier_order_id, SUPPLIER_USER, "Too late")


class TestCounterOffer:
    async def test_counter_offer_waits_for_admin(self, services, seed):
        order, supplier_order = await paid_order_with_assignment(seed)
        countered = await services.supplier_orders.counter_offer(
            supplier_order.supplier_order_id, SUPPLIER_USER, 9.5, notes="Cotton prices went up"
        )
        assert countered.acceptance_status == AcceptanceStatus.COUNTER_OFFERED
        assert countered.status == SupplierOrderStatus.PENDING
        assert countered.counter_offer_price == 9.5
        assert state_label(countered) == "counter_offered"

        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.PAYMENT_RECEIVED
        with pytest.raises(StateError):
            await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)

    async def test_only_supplier_submits(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.counter_offer(supplier_order.supplier_order_id, ADMIN, 9.5)
        with pytest.raises(ValidationError):
            await services.supplier_orders.counter_offer(supplier_order.supplier_order_id, SUPPLIER_USER, 0)

    async def test_admin_accepts_counter_offer(self, services, seed):
        order, supplier_order = await paid_order_with_assignment(seed)
        await services.supplier_orders.counter_offer(supplier_order.supplier_order_id, SUPPLIER_USER, 9.5)

        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.resolve_counter_offer(supplier_order.supplier_order_id, SYSTEM_ACTOR, True)
        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.resolve_counter_offer(supplier_order.supplier_order_id, SUPPLIER_USER, True)

        accepted = await services.supplier_orders.resolve_counter_offer(
            supplier_order.supplier_order_id, ADMIN, True
        )
        assert accepted.acceptance_status == AcceptanceStatus.ACCEPTED
        assert accepted.status == SupplierOrderStatus.IN_PROGRESS
        assert accepted.supplier_price == 9.5

        order = await services.orders.get_order(order.order_id)
        assert order.workflow_status == OrderStatus.BULK_PRODUCTION

    async def test_admin_rejects_counter_offer(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        await services.supplier_orders.counter_offer(supplier_order.supplier_order_id, SUPPLIER_USER, 20.0)

        with pytest.raises(ValidationError):
            await services.supplier_orders.resolve_counter_offer(supplier_order.supplier_order_id, ADMIN, False)

        rejected = await services.supplier_orders.resolve_counter_offer(
            supplier_order.supplier_order_id, ADMIN, False, reason="Over budget"
        )
        assert rejected.status == SupplierOrderStatus.REJECTED
        record = await services.ledger.get("sup_alpha", TARGET_DATE)
        assert record.current_utilization == 0

    async def test_no_open_counter_offer(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        with pytest.raises(StateError):
            await services.supplier_orders.resolve_counter_offer(supplier_order.supplier_order_id, ADMIN, True)


class TestCancel:
    async def test_cancel_in_progress_releases_capacity(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed, quantity=70)
        await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)

        cancelled = await services.supplier_orders.cancel(supplier_order.supplier_order_id, ADMIN, "Buyer refund")
        assert cancelled.status == SupplierOrderStatus.CANCELLED
        record = await services.ledger.get("sup_alpha", TARGET_DATE)
        assert record.available_capacity == 100

        with pytest.raises(StateError):
            await services.supplier_orders.cancel(supplier_order.supplier_order_id, ADMIN, "Again")

    async def test_cancel_rules(self, services, seed):
        _, supplier_order = await paid_order_with_assignment(seed)
        with pytest.raises(PermissionDeniedError):
            await services.supplier_orders.cancel(supplier_order.supplier_order_id, SUPPLIER_USER, "Busy")
        with pytest.raises(ValidationError):
            await services.supplier_orders.cancel(supplier_order.supplier_order_id, ADMIN, "")

    async def test_cancelling_the_order_frees_its_capacity(self, services, seed):
        order, supplier_order = await paid_order_with_assignment(seed, quantity=70)
        await services.supplier_orders.accept(supplier_order.supplier_order_id, SUPPLIER_USER)

        await services.orders.cancel(order.order_id, ADMIN, reason="Refunded")
        await services.bus.drain()

        cancelled = await services.supplier_orders.get(supplier_order.supplier_order_id)
        assert cancelled.status == SupplierOrderStatus.CANCELLED
        assert cancelled.rejection_reason == f"Order {order.order_id} cancelled"
        record = await services.ledger.get("sup_alpha", TARGET_DATE)
        assert record.current_utilization == 0

    async def test_order_cancel_leaves_finished_supplier_orders_alone(self, services, seed):
        await seed.supplier()
        order = await seed.order(quantity=60, status=OrderStatus.PAYMENT_RECEIVED)
        rejected = await seed.assignment(order_id=order.order_id, quantity=20)
        pending = await seed.assignment(order_id=order.order_id, quantity=40)
        await services.supplier_orders.reject(rejected.supplier_order_id, SUPPLIER_USER, "No fabric")

        await services.orders.cancel(order.order_id, ADMIN, reason="Refunded")
        await services.bus.drain()

        assert (await services.supplier_orders.get(rejected.supplier_order_id)).status == SupplierOrderStatus.REJECTED
        assert (await services.supplier_orders.get(pending.supplier_order_id)).status == SupplierOrderStatus.CANCELLED
        record = await services.ledger.get("sup_alpha", TARGET_DATE)
        assert record.current_utilization == 0


class TestQueries:
    async def test_list_filters(self, services, seed):
        await seed.supplier("sup_alpha")
        await seed.supplier("sup_beta")
        order = await seed.order(quantity=20)
        await seed.assignment(order_id=order.order_id, supplier_id="sup_alpha", quantity=10)
        await seed.assignment(order_id=order.order_id, supplier_id="sup_beta", quantity=10)

        assert len(await services.supplier_orders.list(order_id=order.order_id)) == 2
        mine = await services.supplier_orders.list(supplier_id="sup_beta")
        assert [so.supplier_id for so in mine] == ["sup_beta"]
        pending = await services.supplier_orders.list(acceptance_status=AcceptanceStatus.PENDING)
        assert len(pending) == 2

    async def test_supplier_notified_of_new_order(self, services, seed):
        await seed.user(SUPPLIER_USER, "tok_supplier")
        _, supplier_order = await paid_order_with_assignment(seed)
        await services.bus.drain()

        notifications = await services.notifications.list_for_user(SUPPLIER_USER.user_id)
        assert [n["entity_id"] for n in notifications] == [supplier_order.supplier_order_id]
        assert notifications[0]["notification_type"] == "supplier_order_assigned"

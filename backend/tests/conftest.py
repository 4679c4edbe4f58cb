"""
Shared fixtures: an in-memory store, the wired services and seed helpers
"""
import os

# Must be set before config is imported anywhere
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import date, datetime, timedelta, timezone

import pytest

from models.capacity import CapacityUpdate, SupplierCreate, VerificationStatus
from models.order import OrderCreate, OrderStatus
from models.supplier_order import AssignmentCreate
from models.audit import PaymentOutcome, PaymentType
from models.user import Role, User, SYSTEM_ACTOR
from services.container import Services
from services.store import MemoryStore

ADMIN = User(user_id="user_admin", email="admin@example.com", name="Admin", role=Role.ADMIN)
BUYER = User(user_id="user_buyer", email="buyer@example.com", name="Buyer", role=Role.BUYER)
OTHER_BUYER = User(user_id="user_buyer2", email="buyer2@example.com", name="Other Buyer", role=Role.BUYER)
SUPPLIER_USER = User(
    user_id="user_supplier", email="factory@example.com", name="Factory", role=Role.SUPPLIER, supplier_id="sup_alpha"
)

TARGET_DATE = date.today() + timedelta(days=30)


class Seed:
    """Builds the records most tests start from"""

    def __init__(self, services: Services):
        self.services = services

    async def supplier(self, supplier_id="sup_alpha", capacity=100, day=TARGET_DATE, verified=True,
                       performance_score=80, specializations=("casualwear",), lead_time_days=14, is_active=True):
        await self.services.suppliers.save(SupplierCreate(
            supplier_id=supplier_id,
            company_name=f"{supplier_id} Garments",
            verification_status=VerificationStatus.VERIFIED if verified else VerificationStatus.PENDING,
            is_active=is_active,
            performance_score=performance_score,
            specializations=list(specializations),
            lead_time_days=lead_time_days,
        ))
        if capacity is not None:
            await self.services.ledger.set_capacity(
                CapacityUpdate(supplier_id=supplier_id, date=day, total_capacity=capacity)
            )
        return supplier_id

    async def order(self, buyer=BUYER, quantity=50, product_type="t-shirt", status=OrderStatus.QUOTE_REQUESTED):
        order = await self.services.orders.create_order(
            OrderCreate(product_type=product_type, quantity=quantity, target_date=TARGET_DATE, buyer_price=12.0),
            buyer,
        )
        for target in (OrderStatus.QUOTE_SENT, OrderStatus.ADMIN_REVIEW, OrderStatus.AWAITING_PAYMENT):
            if order.workflow_status == status:
                break
            order = await self.services.orders.transition(order.order_id, target, ADMIN)
        if status == OrderStatus.PAYMENT_RECEIVED:
            await self.services.payments.record_payment_event(
                f"pay_{order.order_id}", PaymentOutcome.SUCCEEDED, order.order_id, PaymentType.FULL, 600.0
            )
            order = await self.services.orders.get_order(order.order_id)
        return order

    async def assignment(self, order_id=None, batch_id=None, supplier_id="sup_alpha", quantity=50, day=TARGET_DATE):
        return await self.services.assignments.commit_assignment(
            AssignmentCreate(
                supplier_id=supplier_id, quantity=quantity, target_date=day,
                order_id=order_id, batch_id=batch_id, supplier_price=8.0,
            ),
            ADMIN,
        )

    async def user(self, user: User, token: str):
        tx = self.services.store.transaction()
        tx.insert("users", user.model_dump(mode="json"))
        tx.insert("user_sessions", {
            "user_id": user.user_id,
            "session_token": token,
            "expires_at": (datetime.now(timezone.utc) + timedelta(days=1)).isoformat(),
        })
        await tx.commit()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
async def services(store):
    services = Services(store)
    yield services
    await services.bus.drain()


@pytest.fixture
def seed(services):
    return Seed(services)


@pytest.fixture
def system_actor():
    return SYSTEM_ACTOR

"""
HTTP API tests (FastAPI TestClient over the in-memory store)
- Authentication and staff-only routes
- Full order flow: quote -> payment webhook -> assignment -> acceptance -> stages
- Error payloads carry a machine-readable code
"""
import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN, BUYER, OTHER_BUYER, SUPPLIER_USER, TARGET_DATE, Seed
from dependencies import set_services
from services.container import Services
from services.store import MemoryStore

TOKENS = {
    "admin": "token_admin",
    "buyer": "token_buyer",
    "other_buyer": "token_buyer2",
    "supplier": "token_supplier",
}


def auth(who):
    return {"Authorization": f"Bearer {TOKENS[who]}"}


@pytest.fixture
def api():
    services = Services(MemoryStore())
    seed = Seed(services)

    async def prepare():
        await seed.user(ADMIN, TOKENS["admin"])
        await seed.user(BUYER, TOKENS["buyer"])
        await seed.user(OTHER_BUYER, TOKENS["other_buyer"])
        await seed.user(SUPPLIER_USER, TOKENS["supplier"])
        await seed.supplier()

    set_services(services)
    from server import app
    with TestClient(app) as client:
        client.portal.call(prepare)
        client.services = services
        yield client
    set_services(None)


def drain(api):
    api.portal.call(api.services.bus.drain)


def create_order(api, quantity=50):
    response = api.post("/api/orders", headers=auth("buyer"), json={
        "product_type": "t-shirt",
        "quantity": quantity,
        "target_date": TARGET_DATE.isoformat(),
        "buyer_price": 12.0,
    })
    assert response.status_code == 200, response.text
    return response.json()


def advance(api, order_id, *statuses):
    for status in statuses:
        response = api.post(f"/api/orders/{order_id}/transition", headers=auth("admin"),
                            json={"target_status": status})
        assert response.status_code == 200, f"{status}: {response.text}"
    return response.json()


class TestAuth:
    """Session token handling"""

    def test_root(self, api):
        response = api.get("/api/")
        assert response.status_code == 200
        assert response.json()["status"] == "running"

    def test_missing_token(self, api):
        response = api.get("/api/orders")
        assert response.status_code == 401

    def test_unknown_token(self, api):
        response = api.get("/api/orders", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_session_cookie(self, api):
        api.cookies.set("session_token", TOKENS["buyer"])
        response = api.get("/api/orders")
        api.cookies.clear()
        assert response.status_code == 200

    def test_staff_only_route(self, api):
        response = api.get("/api/capacity/suppliers", headers=auth("buyer"))
        assert response.status_code == 403

        response = api.get("/api/capacity/suppliers", headers=auth("admin"))
        assert response.status_code == 200
        assert [s["supplier_id"] for s in response.json()] == ["sup_alpha"]


class TestOrderFlow:
    """An order from quote to production through the HTTP surface"""

    def test_quote_to_production(self, api):
        order = create_order(api)
        assert order["workflow_status"] == "quote_requested"
        assert order["buyer_id"] == BUYER.user_id
        order_id = order["order_id"]

        order = advance(api, order_id, "quote_sent", "admin_review", "awaiting_payment")
        assert order["workflow_status"] == "awaiting_payment"

        response = api.post("/api/webhooks/payments", json={
            "payment_ref": "pay_api_1", "outcome": "succeeded", "order_id": order_id, "amount": 600.0,
        })
        assert response.status_code == 200, response.text
        assert response.json()["success"] is True
        assert response.json()["workflow_status"] == "payment_received"

        response = api.post("/api/capacity/match", headers=auth("admin"), json={
            "quantity": 50, "target_date": TARGET_DATE.isoformat(),
        })
        assert response.status_code == 200, response.text
        assert response.json()["count"] == 1
        assert response.json()["matches"][0]["supplier_id"] == "sup_alpha"

        response = api.post("/api/supplier-orders", headers=auth("admin"), json={
            "supplier_id": "sup_alpha", "quantity": 50, "target_date": TARGET_DATE.isoformat(),
            "order_id": order_id, "supplier_price": 8.0,
        })
        assert response.status_code == 200, response.text
        supplier_order_id = response.json()["supplier_order_id"]

        response = api.post(f"/api/supplier-orders/{supplier_order_id}/accept", headers=auth("supplier"), json={})
        assert response.status_code == 200, response.text
        assert response.json()["status"] == "in_progress"

        response = api.get(f"/api/orders/{order_id}", headers=auth("buyer"))
        assert response.json()["workflow_status"] == "bulk_production"

        response = api.put(f"/api/stages/{supplier_order_id}/1", headers=auth("supplier"),
                           json={"completion_percentage": 100})
        assert response.status_code == 200, response.text

        response = api.get(f"/api/orders/{order_id}/progress", headers=auth("buyer"))
        assert response.status_code == 200
        assert response.json()["overall_progress"] > 0

        response = api.get(f"/api/orders/{order_id}/history", headers=auth("buyer"))
        states = [h["new_state"] for h in response.json()]
        assert states[0] == "quote_requested"
        assert states[-1] == "bulk_production"

        response = api.get(f"/api/capacity/records/sup_alpha", headers=auth("supplier"))
        [record] = response.json()
        assert record["current_utilization"] == 50
        assert record["available_capacity"] == 50

    def test_buyer_sees_only_own_orders(self, api):
        order = create_order(api)

        response = api.get(f"/api/orders/{order['order_id']}", headers=auth("other_buyer"))
        assert response.status_code == 403

        response = api.get("/api/orders", headers=auth("other_buyer"))
        assert response.json() == []

    def test_buyer_cancels_before_payment(self, api):
        order = create_order(api)
        response = api.post(f"/api/orders/{order['order_id']}/cancel", headers=auth("buyer"),
                            json={"reason": "Changed supplier"})
        assert response.status_code == 200, response.text
        assert response.json()["workflow_status"] == "cancelled"

    def test_buyer_notified_of_transition(self, api):
        order = create_order(api)
        advance(api, order["order_id"], "quote_sent")
        drain(api)

        response = api.get("/api/notifications", headers=auth("buyer"))
        assert response.status_code == 200
        body = response.json()
        assert body["unread_count"] >= 1
        notification = body["notifications"][0]

        response = api.put(f"/api/notifications/{notification['notification_id']}/read", headers=auth("buyer"))
        assert response.status_code == 200
        response = api.put(f"/api/notifications/{notification['notification_id']}/read", headers=auth("other_buyer"))
        assert response.status_code == 404


class TestErrorPayloads:
    """Domain errors map to status codes with an error code"""

    def test_permission_denied(self, api):
        order = create_order(api)
        response = api.post(f"/api/orders/{order['order_id']}/transition", headers=auth("buyer"),
                            json={"target_status": "quote_sent"})
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

    def test_not_found(self, api):
        response = api.get("/api/orders/ord_missing", headers=auth("admin"))
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_skipping_a_status(self, api):
        order = create_order(api)
        response = api.post(f"/api/orders/{order['order_id']}/transition", headers=auth("admin"),
                            json={"target_status": "awaiting_payment"})
        assert response.status_code == 409
        assert response.json()["error"] == "state_error"
        assert response.json()["detail"]

    def test_over_capacity_assignment(self, api):
        order = create_order(api, quantity=150)
        response = api.post("/api/supplier-orders", headers=auth("admin"), json={
            "supplier_id": "sup_alpha", "quantity": 150, "target_date": TARGET_DATE.isoformat(),
            "order_id": order["order_id"], "supplier_price": 8.0,
        })
        assert response.status_code == 409
        assert response.json()["error"] == "capacity_exhausted"

    def test_malformed_webhook(self, api):
        response = api.post("/api/webhooks/payments", content=b"not json")
        assert response.status_code == 400

    def test_webhook_body_must_be_an_object(self, api):
        for body in (b"[]", b"\"x\"", b"42", b""):
            response = api.post("/api/webhooks/payments", content=body)
            assert response.status_code == 400, f"{body!r}: {response.status_code}"

    def test_sync_queue_refuses_unlisted_host(self, api):
        response = api.post("/api/sync-queue", headers=auth("buyer"), json={
            "endpoint": "http://169.254.169.254/latest/meta-data",
        })
        assert response.status_code == 403
        assert response.json()["error"] == "permission_denied"

        response = api.get("/api/sync-queue", headers=auth("admin"))
        assert response.json()["pending_count"] == 0

    def test_request_validation(self, api):
        response = api.post("/api/orders", headers=auth("buyer"), json={"product_type": "t-shirt", "quantity": 0})
        assert response.status_code == 422


class TestBatchesAndPricing:
    def test_pricing_calculate(self, api):
        response = api.post("/api/pricing/calculate", headers=auth("buyer"), json={
            "base_price": 10.0, "quantity": 100, "style_count_in_batch": 1, "fill_percentage": 90,
        })
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["factory_price"] == 10.0
        assert body["buyer_price"] == 11.5
        assert body["solo_order_price"] == 15.0

    def test_pricing_rules(self, api):
        response = api.get("/api/pricing/rules", headers=auth("buyer"))
        assert response.status_code == 200
        assert response.json()["solo_multiplier"] == 1.5

    def test_join_batch(self, api):
        order = create_order(api, quantity=100)
        response = api.post("/api/batches/join", headers=auth("buyer"), json={
            "order_id": order["order_id"], "style_key": "tee-black", "base_price": 10.0,
        })
        assert response.status_code == 200, response.text
        batch_id = response.json()["batch"]["batch_id"]
        assert response.json()["contribution"]["quantity"] == 100

        response = api.get(f"/api/batches/{batch_id}", headers=auth("admin"))
        assert response.status_code == 200
        assert response.json()["batch"]["current_quantity"] == 100
        assert len(response.json()["contributions"]) == 1

        response = api.post(f"/api/batches/{batch_id}/lock", headers=auth("buyer"))
        assert response.status_code == 403


class TestScheduler:
    def test_status_when_disabled(self, api):
        response = api.get("/api/scheduler/status")
        assert response.status_code == 200
        assert response.json()["running"] is False

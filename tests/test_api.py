"""
HTTP surface tests using FastAPI's TestClient with in-memory stores.
"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from backoffice.main import create_app
from backoffice.services.identity import AuthResult
from backoffice.utils.config import Settings
from conftest import customer_row, make_item, order_row

AUTH = {"Authorization": "Bearer valid"}


class StubIdentityGate:
    """Accepts exactly one token"""

    def __init__(self, user_id="admin-1"):
        self.user_id = user_id

    def verify(self, authorization):
        if authorization == "Bearer valid":
            return AuthResult(is_authenticated=True, user_id=self.user_id)
        return AuthResult(is_authenticated=False)


@pytest.fixture
def client(order_store, crm_store, today):
    crm_store.roles = {"admin-1": "admin"}
    app = create_app(
        settings=Settings(VAT_MODE="exclusive", VAT_RATE=0.07),
        order_store=order_store,
        crm_store=crm_store,
        identity_gate=StubIdentityGate(),
        today=lambda: today,
    )
    return TestClient(app)


def order_payload(customer_id, **extra):
    payload = {
        "customer_id": str(customer_id),
        "items": [make_item(quantity=10, unit_price="100", discount_percent="10", shipments=[
            {"shipping_address_id": str(uuid4()), "quantity": 4},
            {"shipping_address_id": str(uuid4()), "quantity": 6},
        ])],
    }
    payload.update(extra)
    return payload


class TestAuthentication:
    """Every business route needs a valid token"""

    @pytest.mark.parametrize("method,path", [
        ("get", "/api/orders"),
        ("post", "/api/orders"),
        ("get", f"/api/orders/{uuid4()}"),
        ("delete", f"/api/orders/{uuid4()}"),
        ("get", "/api/crm/customers"),
        ("get", "/api/crm/payment-followup"),
        ("get", "/api/settings/crm"),
    ])
    def test_missing_token(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized. Login required."}

    def test_wrong_token(self, client):
        response = client.get("/api/orders", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["vat_mode"] == "exclusive"


class TestOrderRoutes:
    """Order endpoints"""

    def test_create_order(self, client, customer_id):
        response = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["order_number"] == "ORD-00001"
        assert Decimal(str(body["order"]["total_amount"])) == Decimal("963.00")
        assert Decimal(str(body["order"]["vat_amount"])) == Decimal("63.00")
        assert body["order"]["created_by"] == "admin-1"

    def test_quantity_mismatch(self, client, order_store, customer_id):
        payload = order_payload(customer_id, items=[make_item(quantity=10, shipments=[
            {"shipping_address_id": str(uuid4()), "quantity": 9},
        ])])

        response = client.post("/api/orders", json=payload, headers=AUTH)

        assert response.status_code == 400
        assert "does not match item quantity" in response.json()["error"]
        assert order_store.orders == {}

    def test_both_discount_forms(self, client, customer_id):
        payload = order_payload(customer_id, items=[make_item(discount_percent="5", discount_type="amount", discount_value="5")])

        response = client.post("/api/orders", json=payload, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Specify either discount_percent")

    def test_malformed_body(self, client):
        response = client.post("/api/orders", json={"items": []}, headers=AUTH)

        assert response.status_code == 400
        assert "customer_id" in response.json()["error"]

    def test_get_and_list(self, client, customer_id):
        created = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH).json()

        fetched = client.get(f"/api/orders/{created['id']}", headers=AUTH)
        listed = client.get("/api/orders", params={"payment_status": "all", "sort_order": "asc"}, headers=AUTH)

        assert fetched.status_code == 200
        assert fetched.json()["order"]["order_number"] == created["order_number"]
        assert listed.status_code == 200
        assert listed.json()["pagination"]["total"] == 1

    def test_get_missing(self, client):
        response = client.get(f"/api/orders/{uuid4()}", headers=AUTH)

        assert response.status_code == 404
        assert response.json() == {"error": "Order not found"}

    def test_invalid_status_filter(self, client):
        response = client.get("/api/orders", params={"status": "lost"}, headers=AUTH)

        assert response.status_code == 400

    def test_replace_shipped_order(self, client, order_store, customer_id):
        created = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH).json()
        order_store.orders[UUID(created["id"])]["order_status"] = "shipping"

        response = client.put(
            f"/api/orders/{created['id']}",
            json={"items": [make_item(quantity=1)]},
            headers=AUTH,
        )

        assert response.status_code == 400
        assert response.json()["error"] == (
            "Cannot edit order items with status: shipping. Only 'new' orders can be fully edited."
        )

    def test_simple_update(self, client, customer_id):
        created = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH).json()

        response = client.put(f"/api/orders/{created['id']}", json={"notes": "ring the bell"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["message"] == "Order updated successfully"
        assert response.json()["order"]["notes"] == "ring the bell"

    def test_cancel(self, client, customer_id):
        created = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH).json()

        first = client.delete(f"/api/orders/{created['id']}", headers=AUTH)
        second = client.delete(f"/api/orders/{created['id']}", headers=AUTH)

        assert first.json() == {"success": True}
        assert second.status_code == 200


class TestCrmRoutes:
    """CRM and settings endpoints"""

    def test_follow_up_list(self, client, crm_store):
        crm_store.customers = [customer_row("Solo Shop")]

        response = client.get("/api/crm/customers", params={"sort_order": "asc"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["summary"]["customersNeverOrdered"] == 1
        assert body["customers"][0]["staleness"] == "never_ordered"

    def test_payment_follow_up_empty(self, client):
        response = client.get("/api/crm/payment-followup", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["pagination"] == {"page": 1, "limit": 20, "total": 0, "totalPages": 0}

    def test_settings_roundtrip(self, client):
        ranges = [{"minDays": 0, "maxDays": 10, "label": "fresh"}, {"minDays": 11, "maxDays": None, "label": "stale"}]

        updated = client.put("/api/settings/crm", json={"dayRanges": ranges}, headers=AUTH)
        fetched = client.get("/api/settings/crm", headers=AUTH)

        assert updated.status_code == 200
        assert updated.json()["success"] is True
        assert [r["label"] for r in fetched.json()["dayRanges"]] == ["fresh", "stale"]

    def test_settings_require_admin(self, order_store, crm_store):
        app = create_app(
            settings=Settings(),
            order_store=order_store,
            crm_store=crm_store,
            identity_gate=StubIdentityGate(user_id="staff-9"),
        )

        response = TestClient(app).put(
            "/api/settings/crm",
            json={"dayRanges": [{"minDays": 0, "label": "all"}]},
            headers=AUTH,
        )

        assert response.status_code == 403
        assert response.json() == {"error": "Only admin can update settings"}

    def test_link_contact(self, client, crm_store):
        contact_id = uuid4()
        customer_id = uuid4()
        crm_store.contacts = [{"id": contact_id, "customer_id": None}]

        response = client.put(
            f"/api/crm/line-contacts/{contact_id}",
            json={"customer_id": str(customer_id)},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert crm_store.contacts[0]["customer_id"] == customer_id


class TestUnexpectedErrors:
    """Internal failures never leak details"""

    def test_internal_error_body(self, order_store, crm_store, customer_id):
        app = create_app(
            settings=Settings(),
            order_store=order_store,
            crm_store=crm_store,
            identity_gate=StubIdentityGate(),
        )
        order_store.insert_order = lambda row: 1 / 0

        response = TestClient(app, raise_server_exceptions=False).post(
            "/api/orders", json=order_payload(customer_id), headers=AUTH,
        )

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestMoneyEncoding:
    """Money fields are JSON numbers on every endpoint"""

    def test_order_endpoints(self, client, customer_id):
        created = client.post("/api/orders", json=order_payload(customer_id), headers=AUTH).json()

        fetched = client.get(f"/api/orders/{created['id']}", headers=AUTH).json()["order"]
        listed = client.get("/api/orders", headers=AUTH).json()["orders"][0]

        assert created["order"]["total_amount"] == 963.0
        assert fetched["total_amount"] == 963.0
        assert listed["total_amount"] == 963.0
        assert isinstance(fetched["items"][0]["unit_price"], float)
        assert isinstance(fetched["items"][0]["shipments"][0]["shipping_fee"], float)

    def test_payment_follow_up(self, client, crm_store, today):
        customer = customer_row()
        crm_store.customers = [customer]
        crm_store.orders = [order_row(
            customer["id"], today - timedelta(days=3),
            total_amount=Decimal("10.50"), order_status="new", payment_status="pending",
        )]

        body = client.get("/api/crm/payment-followup", headers=AUTH).json()

        assert body["customers"][0]["total_pending"] == 10.5
        assert body["customers"][0]["orders"][0]["total_amount"] == 10.5
        assert body["summary"]["totalPending"] == 10.5

    def test_follow_up_customers(self, client, crm_store, today):
        customer = customer_row()
        crm_store.customers = [customer]
        crm_store.orders = [order_row(customer["id"], today - timedelta(days=3), total_amount=Decimal("99.90"))]

        body = client.get("/api/crm/customers", headers=AUTH).json()

        assert body["customers"][0]["total_spent"] == 99.9

    def test_amount_out_of_range(self, client, order_store, customer_id):
        payload = order_payload(customer_id, items=[make_item(quantity=1000, unit_price="1e26")])

        response = client.post("/api/orders", json=payload, headers=AUTH)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Amount out of range")
        assert order_store.orders == {}


class TestLifespan:
    """Connection pool ownership"""

    def test_owned_database_closed_on_shutdown(self):
        with patch("backoffice.main.Database") as database_cls:
            app = create_app(settings=Settings(), identity_gate=StubIdentityGate())

            with TestClient(app):
                database_cls.return_value.close.assert_not_called()

        database_cls.return_value.close.assert_called_once_with()

    def test_injected_database_left_open(self, order_store, crm_store):
        database = MagicMock()
        app = create_app(
            settings=Settings(),
            order_store=order_store,
            crm_store=crm_store,
            identity_gate=StubIdentityGate(),
            database=database,
        )

        with TestClient(app):
            pass

        database.close.assert_not_called()

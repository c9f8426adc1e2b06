"""
HTTP Tests for the Membership API

Tests cover:
1. Authentication and role checks
2. Status codes for each ledger rejection
3. Request validation mapped to 400
4. Provider and unexpected failures
"""

import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from membership.api import app, get_settings, get_store
from membership.auth import TokenService
from membership.config import EmployeeAccount, Settings
from membership.storage import InMemoryCustomerStore


SECRET = "test-secret"
CUSTOMER_ID = "cus_api001"
CUSTOMER_EMAIL = "member@example.com"
EMPLOYEE = EmployeeAccount(id="emp_1", email="ana@store.test", password="s3cret", name="Ana Perez")


@pytest.fixture
def store():
    store = InMemoryCustomerStore()
    store.add_customer(CUSTOMER_ID, CUSTOMER_EMAIL, name="Maria Lopez",
                       metadata={"credits_used": "30"}, paid_invoices=4)
    return store


@pytest.fixture
def client(store):
    settings = Settings(stripe_secret_key="sk_test_x", jwt_secret=SECRET, employees=[EMPLOYEE])
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def tokens():
    return TokenService(SECRET)


@pytest.fixture
def customer_headers(store, tokens):
    token = tokens.issue_customer_token(store.retrieve(CUSTOMER_ID))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def employee_headers(tokens):
    return {"Authorization": f"Bearer {tokens.issue_employee_token(EMPLOYEE)}"}


class TestAuthentication:
    """Tests for bearer token handling."""

    def test_missing_token(self, client):
        response = client.post("/credits/reserve", json={"amount": 10})
        assert response.status_code == 401

    def test_bad_signature(self, client, store):
        token = TokenService("other-secret").issue_customer_token(store.retrieve(CUSTOMER_ID))
        response = client.get("/credits", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid or expired token"

    def test_expired_token(self, client, tokens):
        token = tokens.issue({"customerId": CUSTOMER_ID, "role": "customer"}, timedelta(seconds=-5))
        response = client.get("/credits", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_customer_token_cannot_confirm(self, client, customer_headers):
        response = client.post(
            "/employee/confirm-credit",
            json={"customer_email": CUSTOMER_EMAIL, "credit_amount": 10},
            headers=customer_headers,
        )
        assert response.status_code == 401

    def test_employee_login(self, client):
        response = client.post("/employee/login", json={"email": "ANA@store.test", "password": "s3cret"})

        assert response.status_code == 200
        assert response.json()["name"] == "Ana Perez"

    def test_employee_login_wrong_password(self, client):
        response = client.post("/employee/login", json={"email": "ana@store.test", "password": "nope"})
        assert response.status_code == 401

    def test_portal_login(self, client, tokens):
        response = client.post("/portal/login", json={"email": CUSTOMER_EMAIL})

        assert response.status_code == 200
        claims = tokens.verify(response.json()["token"])
        assert claims.customerId == CUSTOMER_ID

    def test_portal_login_unknown_email(self, client):
        response = client.post("/portal/login", json={"email": "nobody@example.com"})
        assert response.status_code == 404


class TestCreditEndpoints:
    """Tests for the reserve → confirm endpoints."""

    def test_reserve_and_confirm(self, client, store, customer_headers, employee_headers):
        response = client.post("/credits/reserve", json={"amount": 30}, headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["reserved"] == 30
        assert response.json()["new_available"] == 0

        response = client.post(
            "/employee/confirm-credit",
            json={"customer_email": CUSTOMER_EMAIL, "credit_amount": 30},
            headers=employee_headers,
        )

        assert response.status_code == 200
        metadata = store.retrieve(CUSTOMER_ID).metadata
        assert metadata["credits_used"] == "60"
        assert metadata["credits_reserved"] == "0"

    def test_reserve_insufficient(self, client, customer_headers):
        response = client.post("/credits/reserve", json={"amount": 45}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["detail"] == "Insufficient credits. Available: $30"

    def test_confirm_mismatch(self, client, employee_headers):
        response = client.post(
            "/employee/confirm-credit",
            json={"customer_email": CUSTOMER_EMAIL, "credit_amount": 10},
            headers=employee_headers,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Amount does not match reserved credits"

    def test_confirm_unknown_customer(self, client, employee_headers):
        response = client.post(
            "/employee/confirm-credit",
            json={"customer_email": "nobody@example.com", "credit_amount": 10},
            headers=employee_headers,
        )
        assert response.status_code == 404

    @pytest.mark.parametrize("body", [{}, {"amount": 0}, {"amount": -5}, {"amount": "lots"}])
    def test_reserve_validation(self, client, customer_headers, body):
        response = client.post("/credits/reserve", json=body, headers=customer_headers)

        assert response.status_code == 400
        assert "amount" in response.json()["detail"]

    def test_credit_summary(self, client, customer_headers):
        response = client.get("/credits", headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["available"] == 30

    def test_unknown_customer_in_token(self, client, tokens):
        token = tokens.issue({"customerId": "cus_gone", "role": "customer"}, timedelta(minutes=5))
        response = client.get("/credits", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 404


class TestCashbackEndpoints:
    def test_add_purchase_and_read_back(self, client, employee_headers, customer_headers):
        response = client.post("/employee/cashback", json={
            "action": "add_purchase", "customer_id": CUSTOMER_ID, "amount": 120, "description": "Pillows",
        }, headers=employee_headers)

        assert response.status_code == 200
        assert response.json()["data"]["new_balance"] == "12.00"

        response = client.get("/cashback/balance", headers=customer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["cashback_balance"] == "12"
        assert body["total_earned"] == "12"
        assert body["cashback_history"][0]["type"] == "earned"

    def test_employee_history(self, client, employee_headers):
        response = client.get("/employee/cashback", params={"customer_id": CUSTOMER_ID}, headers=employee_headers)

        assert response.status_code == 200
        assert response.json()["cashback_history"] == []

    def test_invalid_action(self, client, employee_headers):
        response = client.post("/employee/cashback", json={
            "action": "refund", "customer_id": CUSTOMER_ID,
        }, headers=employee_headers)
        assert response.status_code == 400

    def test_use_over_cap(self, client, store, employee_headers):
        store.update_metadata(CUSTOMER_ID, {"cashback_balance": "10"})

        response = client.post("/employee/cashback", json={
            "action": "use_cashback", "customer_id": CUSTOMER_ID, "cashback_used": 6,
        }, headers=employee_headers)

        assert response.status_code == 400
        assert "Maximum allowed" in response.json()["detail"]


class TestProtectorEndpoints:
    def test_claim_twice(self, client, customer_headers):
        first = client.post("/protector/claim", json={"protector_number": 2}, headers=customer_headers)
        second = client.post("/protector/claim", json={"protector_number": 2}, headers=customer_headers)

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.json()["detail"] == "Protector replacement #2 has already been claimed"

    def test_claim_out_of_range(self, client, customer_headers):
        response = client.post("/protector/claim", json={"protector_number": 4}, headers=customer_headers)
        assert response.status_code == 400

    def test_request_inactive_subscription(self, client, store, customer_headers):
        store.subscriptions[CUSTOMER_ID][0].status = "canceled"

        response = client.post("/protector/request", json={
            "protector_number": 1,
            "reason": "Stain",
            "mattress_size": "Queen",
            "shipping_address": {
                "full_name": "Maria Lopez", "address1": "100 Main St", "city": "Houston", "state": "TX",
                "zip_code": "77002", "phone": "555-0100", "email": CUSTOMER_EMAIL,
            },
        }, headers=customer_headers)

        assert response.status_code == 400
        assert "not active" in response.json()["detail"]

    def test_request_incomplete_address(self, client, customer_headers):
        response = client.post("/protector/request", json={
            "protector_number": 1,
            "reason": "Stain",
            "mattress_size": "Queen",
            "shipping_address": {"full_name": "Maria Lopez"},
        }, headers=customer_headers)
        assert response.status_code == 400

    def test_status(self, client, store, customer_headers):
        store.update_metadata(CUSTOMER_ID, {"protector_3_used": "true", "protector_3_status": "shipped"})

        response = client.get("/protector/status", headers=customer_headers)

        body = response.json()
        assert response.status_code == 200
        assert [p["status"] for p in body["protectors"]] == ["available", "available", "shipped"]
        assert body["summary"] == {"total": 3, "used": 1, "available": 2, "subscription_active": True}


class TestLookups:
    def test_portal_data(self, client, customer_headers):
        response = client.get("/portal/data", headers=customer_headers)

        assert response.status_code == 200
        assert response.json()["credits"]["available"] == 30

    def test_customer_search(self, client, store, employee_headers):
        store.update_metadata(CUSTOMER_ID, {"last_transaction": json.dumps({
            "amount": 15, "date": "2024-05-01T00:00:00.000Z", "type": "in_store_purchase",
        })})

        response = client.post("/employee/customer-search", json={"email": CUSTOMER_EMAIL}, headers=employee_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["customer"]["id"] == CUSTOMER_ID
        assert body["last_transaction"]["amount"] == 15
        assert body["coupons"]["success"] is False

    def test_customer_search_not_found(self, client, employee_headers):
        response = client.post("/employee/customer-search", json={"email": "x@example.com"}, headers=employee_headers)
        assert response.status_code == 404


class TestFailures:
    def test_provider_not_configured(self, store, customer_headers):
        settings = Settings(stripe_secret_key="sk_placeholder", jwt_secret=SECRET)
        app.dependency_overrides[get_settings] = lambda: settings
        try:
            response = TestClient(app).get("/credits", headers=customer_headers)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 503

    def test_unexpected_error_is_generic(self, client, store, customer_headers, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("provider timeout")

        monkeypatch.setattr(store, "list_paid_invoices", boom)

        response = TestClient(app, raise_server_exceptions=False).get("/credits", headers=customer_headers)

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "healthy"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

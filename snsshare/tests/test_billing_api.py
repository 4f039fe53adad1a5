"""
Billing API: checkout endpoint, webhook acknowledgement, status.

Webhook processing runs after the response; leaving the TestClient context
runs the lifespan shutdown, which drains in-flight events before the
assertions read the database.
"""
import hashlib
import hmac
import json
import time
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from snsshare.core.config import settings
from snsshare.core.database import get_db_session, billing_events, corporate_tenants, subscriptions
from snsshare.main import app

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def _subscription_event(event_id="evt_api_1", customer="cus_test_123"):
    return {
        "id": event_id,
        "type": "customer.subscription.created",
        "created": int(time.time()),
        "data": {
            "object": {
                "id": "sub_api_1",
                "customer": customer,
                "status": "active",
                "current_period_start": 1767225600,
                "current_period_end": 1769904000,
                "items": {"data": [{"price": {"id": settings.STRIPE_PRICE_STARTER_MONTH}}]},
            }
        },
    }


@pytest.fixture
def stripe_configured(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_dummy")
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)


def test_checkout_requires_auth():
    with TestClient(app) as client:
        response = client.post("/api/billing/checkout", json={"plan": "personal"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "unauthorized"


def test_checkout_returns_session(user_factory, mock_provider):
    user_factory("U1", email="u1@example.com")
    with patch("snsshare.features.billing.service.get_provider", return_value=mock_provider):
        with TestClient(app) as client:
            response = client.post(
                "/api/billing/checkout",
                headers={"X-User-Id": "U1"},
                json={
                    "plan": "business",
                    "interval": "month",
                    "isCorporate": True,
                    "companyName": "Acme KK",
                    "bundledItems": {
                        "quantity": 3,
                        "shipping": {"postalCode": "150-0001", "address": "Shibuya 1-2-3", "recipientName": "Taro"},
                    },
                },
            )
    assert response.status_code == 200
    data = response.json()
    assert data["checkoutUrl"] == "https://checkout.stripe.test/pay/cs_test_1"
    assert data["sessionId"] == "cs_test_1"
    assert data["totalAmount"] == 12000 + 550 * 3 + 185
    assert data["localOrderId"]


def test_checkout_unknown_plan_error_contract(user_factory, mock_provider):
    user_factory("U1")
    with patch("snsshare.features.billing.service.get_provider", return_value=mock_provider):
        with TestClient(app) as client:
            response = client.post(
                "/api/billing/checkout",
                headers={"X-User-Id": "U1", "X-Request-Id": "req-123"},
                json={"plan": "platinum"},
            )
    assert response.status_code == 400
    body = response.json()
    assert body["error"]["code"] == "plan_not_found"
    assert body["error"]["request_id"] == "req-123"
    assert body["detail"] == body["error"]["message"]
    assert response.headers["x-request-id"] == "req-123"


def test_checkout_permanent_user_is_forbidden(user_factory, mock_provider):
    user_factory("U1", subscription_status="permanent")
    with patch("snsshare.features.billing.service.get_provider", return_value=mock_provider):
        with TestClient(app) as client:
            response = client.post("/api/billing/checkout", headers={"X-User-Id": "U1"}, json={"plan": "personal"})
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "permanent_user_restriction"


def test_checkout_billing_disabled(user_factory):
    user_factory("U1")
    with TestClient(app) as client:
        response = client.post("/api/billing/checkout", headers={"X-User-Id": "U1"}, json={"plan": "personal"})
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "billing_disabled"


def test_webhook_without_secret_is_acknowledged_unprocessed():
    payload = json.dumps(_subscription_event()).encode("utf-8")
    with TestClient(app) as client:
        response = client.post("/api/billing/webhook", content=payload, headers={"stripe-signature": "t=1,v1=abc"})
    assert response.status_code == 200
    assert response.json() == {"received": False}


def test_webhook_bad_signature_is_rejected(stripe_configured):
    payload = json.dumps(_subscription_event()).encode("utf-8")
    with TestClient(app) as client:
        response = client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"stripe-signature": _sign(payload, secret="whsec_wrong")},
        )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "invalid_webhook"


def test_webhook_missing_signature_is_rejected(stripe_configured):
    with TestClient(app) as client:
        response = client.post("/api/billing/webhook", content=b"{}")
    assert response.status_code == 400


def test_webhook_is_acknowledged_then_processed(stripe_configured, user_factory, customer_factory):
    user_factory("U1", company_name="Acme KK")
    customer_factory("U1", "cus_test_123")
    payload = json.dumps(_subscription_event()).encode("utf-8")

    with TestClient(app) as client:
        response = client.post("/api/billing/webhook", content=payload, headers={"stripe-signature": _sign(payload)})
        assert response.status_code == 200
        assert response.json() == {"received": True, "event_id": "evt_api_1"}

    with get_db_session() as session:
        sub = session.execute(select(subscriptions).where(subscriptions.c.user_id == "U1")).first()
        tenant = session.execute(select(corporate_tenants).where(corporate_tenants.c.admin_id == "U1")).first()
        event = session.execute(select(billing_events).where(billing_events.c.stripe_event_id == "evt_api_1")).first()
    assert sub.status == "active"
    assert sub.plan == "starter"
    assert tenant.max_users == 10
    assert event.processed is True


def test_webhook_processing_failure_still_returns_200(stripe_configured):
    payload = json.dumps(_subscription_event(event_id="evt_api_orphan", customer="cus_nobody")).encode("utf-8")
    with TestClient(app) as client:
        response = client.post("/api/billing/webhook", content=payload, headers={"stripe-signature": _sign(payload)})
        assert response.status_code == 200

    with get_db_session() as session:
        event = session.execute(
            select(billing_events).where(billing_events.c.stripe_event_id == "evt_api_orphan")
        ).first()
    assert event.processed is False
    assert event.error.startswith("user_not_found")


def test_billing_status(user_factory, subscription_factory, tenant_factory):
    user_factory("U1")
    subscription_factory("U1", status="active", plan="business", interval="month")
    tenant_factory("U1", max_users=30)
    with TestClient(app) as client:
        response = client.get("/api/billing/status", headers={"X-User-Id": "U1"})
    assert response.status_code == 200
    data = response.json()
    assert data["enabled"] is False
    assert data["plan"] == "business"
    assert data["status"] == "active"
    assert data["max_users"] == 30

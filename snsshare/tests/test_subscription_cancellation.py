"""
End-of-period cancellation and its withdrawal.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from snsshare.core.database import get_db_session, subscriptions
from snsshare.core.errors import NotFoundError, ValidationError
from snsshare.features.billing.service import set_cancel_at_period_end
from snsshare.main import app


def _cancel_flag(user_id):
    with get_db_session() as session:
        return session.execute(
            select(subscriptions.c.cancel_at_period_end).where(subscriptions.c.user_id == user_id)
        ).scalar()


def test_cancel_then_reactivate(user_factory, subscription_factory):
    user_factory("U1", subscription_status="active")
    subscription_factory("U1", status="active")

    status = set_cancel_at_period_end("U1", True)
    assert status["cancel_at_period_end"] is True
    assert status["status"] == "active"
    assert _cancel_flag("U1") is True

    status = set_cancel_at_period_end("U1", False)
    assert status["cancel_at_period_end"] is False
    assert _cancel_flag("U1") is False


def test_repeated_cancel_is_a_no_op(user_factory, subscription_factory):
    user_factory("U1", subscription_status="trialing")
    subscription_factory("U1", status="trialing")
    set_cancel_at_period_end("U1", True)
    assert set_cancel_at_period_end("U1", True)["cancel_at_period_end"] is True


def test_cancel_without_subscription(user_factory):
    user_factory("U1")
    with pytest.raises(NotFoundError) as exc:
        set_cancel_at_period_end("U1", True)
    assert exc.value.code == "subscription_not_found"


@pytest.mark.parametrize("status", ["pending", "past_due", "canceled"])
def test_only_live_subscriptions_can_be_canceled(user_factory, subscription_factory, status):
    user_factory("U1")
    subscription_factory("U1", status=status)
    with pytest.raises(ValidationError) as exc:
        set_cancel_at_period_end("U1", True)
    assert exc.value.code == "subscription_not_live"
    assert _cancel_flag("U1") is False


def test_cancel_routes(user_factory, subscription_factory):
    user_factory("U1", subscription_status="active")
    subscription_factory("U1", status="active")
    user_factory("U2")

    with TestClient(app) as client:
        canceled = client.post("/api/billing/cancel", headers={"X-User-Id": "U1"})
        reactivated = client.post("/api/billing/reactivate", headers={"X-User-Id": "U1"})
        missing = client.post("/api/billing/cancel", headers={"X-User-Id": "U2"})

    assert canceled.status_code == 200
    assert canceled.json()["cancel_at_period_end"] is True
    assert reactivated.json()["cancel_at_period_end"] is False
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "subscription_not_found"

"""
Integrity check and trial grace-period expiry.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from snsshare.core.database import get_db_session, get_engine, checkout_orders, corporate_tenants, subscriptions, users
from snsshare.features.billing.checkout import start_checkout
from snsshare.features.billing.maintenance import expire_grace_periods, run_integrity_check
from snsshare.workers.billing_maintenance import run_once

NOW = datetime(2026, 5, 1, tzinfo=timezone.utc)


def _user_status(user_id):
    with get_db_session() as session:
        return session.execute(select(users.c.subscription_status).where(users.c.user_id == user_id)).scalar()


def _subscription_status(user_id):
    with get_db_session() as session:
        return session.execute(select(subscriptions.c.status).where(subscriptions.c.user_id == user_id)).scalar()


@pytest.fixture
def foreign_keys_on():
    engine = get_engine()
    if engine.dialect.name != "sqlite":
        pytest.skip("foreign keys are always enforced outside SQLite")
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")
    yield
    with engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=OFF")


def test_integrity_check_reports_without_fix(user_factory, subscription_factory):
    user_factory("T1", subscription_status="trialing", trial_ends_at=NOW + timedelta(days=3))
    subscription_factory("T1", status="pending")
    user_factory("A1", subscription_status="free")
    subscription_factory("A1", status="active")

    result = run_integrity_check(now=NOW)

    types = sorted(issue["type"] for issue in result["issues"])
    assert types == ["active_subscription_user_not_active", "trial_with_pending_subscription"]
    assert result["corrections_applied"] == 0
    assert _subscription_status("T1") == "pending"
    assert _user_status("A1") == "free"


def test_integrity_check_fix_repairs_safe_cases(user_factory, subscription_factory):
    user_factory("T1", subscription_status="trialing", trial_ends_at=NOW + timedelta(days=3))
    subscription_factory("T1", status="pending")
    user_factory("A1", subscription_status="trialing")
    subscription_factory("A1", status="active")

    result = run_integrity_check(now=NOW, fix=True)

    assert result["corrections_applied"] == 2
    assert _subscription_status("T1") == "canceled"
    assert _user_status("T1") == "trialing"
    assert _user_status("A1") == "active"


def test_abandoned_corporate_checkout_is_canceled_with_foreign_keys(foreign_keys_on, user_factory, mock_provider):
    user_factory("T2", subscription_status="trialing", trial_ends_at=NOW + timedelta(days=5))
    checkout = start_checkout("T2", "business", "month", True, provider=mock_provider)
    assert checkout.tenant_id is not None

    result = run_integrity_check(now=NOW, fix=True)

    assert result["corrections_applied"] == 1
    assert _subscription_status("T2") == "canceled"
    with get_db_session() as session:
        order = session.execute(
            select(checkout_orders.c.status, checkout_orders.c.subscription_row_id)
            .where(checkout_orders.c.id == checkout.local_order_id)
        ).one()
        tenant_sub = session.execute(
            select(corporate_tenants.c.subscription_id).where(corporate_tenants.c.id == checkout.tenant_id)
        ).scalar()
    assert order.status == "expired"
    assert order.subscription_row_id == checkout.subscription_row_id
    assert tenant_sub == checkout.subscription_row_id

    # a second pass has nothing left to repair
    assert run_integrity_check(now=NOW, fix=True)["issues_found"] == 0


def test_integrity_fix_respects_limit(user_factory, subscription_factory):
    for uid in ("A1", "A2", "A3"):
        user_factory(uid)
        subscription_factory(uid, status="active")
    result = run_integrity_check(now=NOW, fix=True, limit=2)
    assert result["issues_found"] == 3
    assert result["corrections_applied"] == 2


def test_dual_tenant_relation_is_reported_only(user_factory, tenant_factory):
    user_factory("OWNER")
    other_tenant = tenant_factory("OWNER")
    user_factory("D1", corporate_role="member", tenant_id=other_tenant)
    tenant_factory("D1")

    result = run_integrity_check(now=NOW, fix=True)

    [issue] = result["issues"]
    assert issue["type"] == "dual_tenant_relation"
    assert issue["member_tenant_id"] == other_tenant
    assert result["corrections_applied"] == 0


def test_expired_trials_past_grace_are_closed(user_factory, subscription_factory):
    user_factory("OLD", subscription_status="trialing", trial_ends_at=NOW - timedelta(days=10))
    user_factory("RECENT", subscription_status="trialing", trial_ends_at=NOW - timedelta(days=2))
    user_factory("PAID", subscription_status="free", trial_ends_at=NOW - timedelta(days=30))
    subscription_factory("PAID", status="active")
    user_factory("PERM", subscription_status="permanent", trial_ends_at=NOW - timedelta(days=30))

    result = expire_grace_periods(now=NOW, grace_days=7)

    assert result["user_ids"] == ["OLD"]
    assert _user_status("OLD") == "grace_period_expired"
    assert _user_status("RECENT") == "trialing"
    assert _user_status("PAID") == "free"
    assert _user_status("PERM") == "permanent"


def test_worker_run_once_summarizes(user_factory, subscription_factory):
    user_factory("A1")
    subscription_factory("A1", status="active")
    stats = run_once(fix=False)
    assert stats == {"issues_found": 1, "corrections_applied": 0, "grace_expired": 0}

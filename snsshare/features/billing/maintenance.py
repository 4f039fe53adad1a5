"""
Billing maintenance jobs.

- run_integrity_check: finds subscription rows that disagree with the user
  row or with each other, optionally repairing the safe cases
- expire_grace_periods: closes out trials that ended more than
  TRIAL_GRACE_DAYS ago without a paid subscription
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional

from sqlalchemy import select, update

from snsshare.core.clock import as_utc, normalize_now
from snsshare.core.config import settings
from snsshare.core.database import get_db_session, checkout_orders, corporate_tenants, subscriptions, users
from snsshare.features.billing.lifecycle import SubscriptionStatus, require_transition

logger = logging.getLogger("snsshare")


def _cancel_abandoned_checkout(session, subscription_row_id: str, now: datetime) -> None:
    """Cancel a leftover pending row; order and tenant rows keep their reference to it."""
    require_transition(SubscriptionStatus.PENDING, SubscriptionStatus.CANCELED)
    session.execute(
        update(subscriptions)
        .where(subscriptions.c.id == subscription_row_id)
        .where(subscriptions.c.status == SubscriptionStatus.PENDING.value)
        .values(status=SubscriptionStatus.CANCELED.value, canceled_at=now, updated_at=now)
    )
    session.execute(
        update(checkout_orders)
        .where(checkout_orders.c.subscription_row_id == subscription_row_id)
        .where(checkout_orders.c.status == "pending")
        .values(status="expired")
    )


def run_integrity_check(now: Optional[datetime] = None, fix: bool = False, limit: int = 100) -> Dict[str, Any]:
    now = normalize_now(now)
    issues = []
    corrections = 0

    with get_db_session() as session:
        # Trial users holding a leftover pending row from an abandoned checkout
        rows = session.execute(
            select(users.c.user_id, users.c.trial_ends_at, subscriptions.c.id)
            .join(subscriptions, subscriptions.c.user_id == users.c.user_id)
            .where(users.c.subscription_status == "trialing")
            .where(subscriptions.c.status == "pending")
        ).fetchall()
        for r in rows:
            if r.trial_ends_at is None or as_utc(r.trial_ends_at) <= now:
                continue
            issues.append({"type": "trial_with_pending_subscription", "user_id": r.user_id, "subscription_row_id": r.id})
            if fix and corrections < limit:
                _cancel_abandoned_checkout(session, r.id, now)
                corrections += 1

        # Active subscription but the user row never caught up
        rows = session.execute(
            select(users.c.user_id)
            .join(subscriptions, subscriptions.c.user_id == users.c.user_id)
            .where(subscriptions.c.status == "active")
            .where(users.c.subscription_status.in_(("free", "trialing")))
        ).fetchall()
        for r in rows:
            issues.append({"type": "active_subscription_user_not_active", "user_id": r.user_id})
            if fix and corrections < limit:
                session.execute(
                    update(users).where(users.c.user_id == r.user_id).values(subscription_status="active")
                )
                corrections += 1

        # Admin of one tenant and member of another (report only)
        rows = session.execute(
            select(users.c.user_id, users.c.tenant_id, corporate_tenants.c.id.label("admin_tenant_id"))
            .join(corporate_tenants, corporate_tenants.c.admin_id == users.c.user_id)
            .where(users.c.tenant_id.is_not(None))
            .where(users.c.tenant_id != corporate_tenants.c.id)
        ).fetchall()
        for r in rows:
            issues.append({
                "type": "dual_tenant_relation",
                "user_id": r.user_id,
                "member_tenant_id": r.tenant_id,
                "admin_tenant_id": r.admin_tenant_id,
            })

    for issue in issues:
        logger.warning("billing.integrity.issue", extra=issue)

    summary = {
        "issues_found": len(issues),
        "corrections_applied": corrections,
        "issues": issues,
        "timestamp": now.isoformat(),
    }
    logger.info("billing.integrity.done", extra={"issues_found": len(issues), "corrections_applied": corrections})
    return summary


def expire_grace_periods(now: Optional[datetime] = None, grace_days: Optional[int] = None) -> Dict[str, Any]:
    now = normalize_now(now)
    days = settings.TRIAL_GRACE_DAYS if grace_days is None else grace_days
    cutoff = now - timedelta(days=days)

    with get_db_session() as session:
        has_live_subscription = (
            select(subscriptions.c.id)
            .where(subscriptions.c.user_id == users.c.user_id)
            .where(subscriptions.c.status.in_(("active", "trialing")))
            .exists()
        )
        candidates = session.execute(
            select(users.c.user_id, users.c.trial_ends_at)
            .where(users.c.trial_ends_at.is_not(None))
            .where(users.c.subscription_status.in_(("free", "trialing")))
            .where(~has_live_subscription)
        ).fetchall()
        expired = [r.user_id for r in candidates if as_utc(r.trial_ends_at) < cutoff]
        if expired:
            session.execute(
                update(users)
                .where(users.c.user_id.in_(expired))
                .values(subscription_status="grace_period_expired")
            )

    logger.info("billing.grace.expired", extra={"count": len(expired), "cutoff": cutoff.isoformat()})
    return {"expired": len(expired), "user_ids": expired, "cutoff": cutoff.isoformat()}

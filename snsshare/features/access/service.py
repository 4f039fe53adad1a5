"""
Access query service.

Loads the persisted billing/tenant attributes for a user into an immutable
AccessSubject and runs the resolver plus navigation policy. Nothing here is
cached: every call reads the store and resolves against the current time.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import select

from snsshare.core.clock import normalize_now
from snsshare.core.config import settings
from snsshare.core.database import get_db_session, users, subscriptions, corporate_tenants
from snsshare.core.errors import NotFoundError
from snsshare.features.access.navigation import build_policy
from snsshare.features.access.resolver import resolve_access, tenant_invariant_violations
from snsshare.models.access import (
    AccessDecision,
    AccessSubject,
    NavigationPolicy,
    SubscriptionSnapshot,
    TenantSnapshot,
)

logger = logging.getLogger("snsshare")


def _tenant_snapshot(row) -> Optional[TenantSnapshot]:
    if row is None:
        return None
    return TenantSnapshot(
        id=row.id,
        name=row.name,
        account_status=row.account_status,
        max_users=row.max_users,
    )


def load_access_subject(user_id: str, session=None) -> AccessSubject:
    """
    Raises:
        NotFoundError: unknown user
    """
    if session is None:
        with get_db_session() as own_session:
            return load_access_subject(user_id, session=own_session)

    user = session.execute(select(users).where(users.c.user_id == user_id)).first()
    if user is None:
        raise NotFoundError(f"User not found: {user_id}", code="user_not_found")

    sub = session.execute(
        select(subscriptions.c.status, subscriptions.c.plan, subscriptions.c.interval)
        .where(subscriptions.c.user_id == user_id)
    ).first()
    admin_tenant = session.execute(
        select(corporate_tenants).where(corporate_tenants.c.admin_id == user_id)
    ).first()
    member_tenant = None
    if user.tenant_id:
        member_tenant = session.execute(
            select(corporate_tenants).where(corporate_tenants.c.id == user.tenant_id)
        ).first()

    return AccessSubject(
        user_id=user.user_id,
        email=user.email,
        subscription_status=user.subscription_status,
        trial_ends_at=user.trial_ends_at,
        corporate_role=user.corporate_role,
        subscription=SubscriptionSnapshot(status=sub.status, plan=sub.plan, interval=sub.interval) if sub else None,
        admin_of_tenant=_tenant_snapshot(admin_tenant),
        tenant=_tenant_snapshot(member_tenant),
    )


def resolve_for_user(
    user_id: str,
    current_path: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Tuple[AccessDecision, NavigationPolicy]:
    subject = load_access_subject(user_id)

    for violation in tenant_invariant_violations(subject):
        logger.error(
            "access.invariant.violation",
            extra={
                "user_id": user_id,
                "violation": violation,
                "admin_tenant_id": subject.admin_of_tenant.id if subject.admin_of_tenant else None,
                "member_tenant_id": subject.tenant.id if subject.tenant else None,
            },
        )

    decision = resolve_access(
        subject,
        now=normalize_now(now),
        operator_emails=settings.operator_emails(),
    )
    policy = build_policy(decision, current_path)
    logger.info(
        "access.resolved",
        extra={
            "user_id": user_id,
            "user_type": decision.user_type.value,
            "path": current_path,
            "should_redirect": policy.should_redirect,
        },
    )
    return decision, policy

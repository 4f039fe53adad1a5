"""
User domain service.
- get_user(user_id)
- create_user(...)
- set_subscription_status(...)
- grant_permanent(...)
"""

import logging
from datetime import datetime
from typing import Optional, Tuple
from sqlalchemy import select, insert, update

from snsshare.core.config import settings
from snsshare.core.database import get_db_session, users
from snsshare.core.errors import AuthorizationError, NotFoundError, ValidationError
from snsshare.features.plans.catalog import DEFAULT_PLANS
from snsshare.features.tenants.service import find_admin_tenant, upsert_admin_tenant
from snsshare.models.plan import PlanTier
from snsshare.models.user import CORPORATE_ROLES, SUBSCRIPTION_STATUSES, User

logger = logging.getLogger("snsshare")


def _to_user(row) -> User:
    return User(
        user_id=row.user_id,
        email=row.email,
        display_name=row.display_name,
        company_name=row.company_name,
        subscription_status=row.subscription_status,
        trial_ends_at=row.trial_ends_at,
        corporate_role=row.corporate_role,
        tenant_id=row.tenant_id,
        created_at=row.created_at,
    )


def get_user(user_id: str, session=None) -> Optional[User]:
    if session is not None:
        row = session.execute(select(users).where(users.c.user_id == user_id)).first()
        return _to_user(row) if row else None
    with get_db_session() as own_session:
        return get_user(user_id, session=own_session)


def create_user(
    user_id: str,
    *,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    company_name: Optional[str] = None,
    subscription_status: str = "free",
    trial_ends_at: Optional[datetime] = None,
    corporate_role: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> User:
    if subscription_status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Unknown subscription status: {subscription_status}")
    if corporate_role is not None and corporate_role not in CORPORATE_ROLES:
        raise ValidationError(f"Unknown corporate role: {corporate_role}")
    values = dict(
        user_id=user_id,
        email=email,
        display_name=User.normalized_display_name(user_id, display_name),
        company_name=company_name,
        subscription_status=subscription_status,
        trial_ends_at=trial_ends_at,
        corporate_role=corporate_role,
        tenant_id=tenant_id,
    )
    with get_db_session() as session:
        session.execute(insert(users).values(**values))
    return User(**values)


def set_subscription_status(session, user_id: str, status: str) -> bool:
    """
    Update users.subscription_status inside the caller's transaction.

    Permanent licenses are never overwritten by billing events.
    Returns True when a row changed.
    """
    if status not in SUBSCRIPTION_STATUSES:
        raise ValidationError(f"Unknown subscription status: {status}")
    result = session.execute(
        update(users)
        .where(users.c.user_id == user_id)
        .where(users.c.subscription_status != "permanent")
        .values(subscription_status=status)
    )
    return result.rowcount > 0


def grant_permanent(operator_user_id: str, target_user_id: str) -> Tuple[User, Optional[str]]:
    """
    Give `target_user_id` a permanent license. Operators only.

    A user with no tenant relation also gets a tenant of their own sized for
    the largest plan, so corporate pages work for them straight away.

    Returns:
        (user, tenant_id) where tenant_id is the tenant they administer, if any.

    Raises:
        AuthorizationError: caller is not an operator
        NotFoundError: target user does not exist
    """
    operator = get_user(operator_user_id)
    if operator is None or not operator.email or operator.email.strip().lower() not in settings.operator_emails():
        raise AuthorizationError("Only operators can grant permanent licenses", code="not_operator")

    with get_db_session() as session:
        target = get_user(target_user_id, session=session)
        if target is None:
            raise NotFoundError(f"User not found: {target_user_id}", code="user_not_found")
        session.execute(
            update(users).where(users.c.user_id == target_user_id).values(subscription_status="permanent")
        )
        admin_tenant = find_admin_tenant(session, target_user_id)
        tenant_id = admin_tenant.id if admin_tenant is not None else None
        if target.tenant_id is None and admin_tenant is None:
            tenant_id, _ = upsert_admin_tenant(
                session,
                admin_id=target_user_id,
                max_users=DEFAULT_PLANS[PlanTier.ENTERPRISE]["seat_limit"],
                subscription_row_id=None,
            )
        granted = get_user(target_user_id, session=session)

    logger.info("user.permanent_granted", extra={"user_id": target_user_id, "operator_id": operator_user_id})
    return granted, tenant_id

"""
Corporate tenant provisioning.

A user administers at most one tenant (unique admin_id). Provisioning always
looks for the existing tenant inside the current transaction before inserting,
and a lost insert race surfaces as IntegrityError for the caller to retry.

suspend_tenant and reactivate_tenant flip account_status for the admin.
"""

import logging
from typing import Optional, Tuple
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from snsshare.core.database import get_db_session, corporate_tenants, users
from snsshare.core.errors import AuthorizationError, NotFoundError, PermanentUserRestrictionError, ValidationError

logger = logging.getLogger("snsshare")

DEFAULT_TENANT_NAME = "Company"


def find_admin_tenant(session, admin_id: str):
    return session.execute(
        select(corporate_tenants).where(corporate_tenants.c.admin_id == admin_id)
    ).first()


def tenant_name_for(session, admin_id: str, requested: Optional[str] = None) -> str:
    if requested and requested.strip():
        return requested.strip()
    row = session.execute(
        select(users.c.company_name, users.c.display_name).where(users.c.user_id == admin_id)
    ).first()
    if row and row.company_name:
        return row.company_name
    if row and row.display_name:
        return f"{row.display_name}'s company"
    return DEFAULT_TENANT_NAME


def upsert_admin_tenant(
    session,
    *,
    admin_id: str,
    max_users: int,
    subscription_row_id: Optional[str],
    name: Optional[str] = None,
) -> Tuple[str, bool]:
    """
    Reuse the admin's tenant or create exactly one, in the caller's transaction.

    Returns:
        (tenant_id, created)

    Raises:
        IntegrityError: a concurrent transaction created the tenant first
    """
    existing = find_admin_tenant(session, admin_id)
    if existing is not None:
        values = {"max_users": max_users}
        if subscription_row_id:
            values["subscription_id"] = subscription_row_id
        session.execute(
            update(corporate_tenants)
            .where(corporate_tenants.c.id == existing.id)
            .values(**values)
        )
        tenant_id, created = existing.id, False
    else:
        tenant_id = str(uuid4())
        session.execute(
            insert(corporate_tenants).values(
                id=tenant_id,
                name=tenant_name_for(session, admin_id, name),
                account_status="active",
                max_users=max_users,
                admin_id=admin_id,
                subscription_id=subscription_row_id,
            )
        )
        created = True

    session.execute(
        update(users).where(users.c.user_id == admin_id).values(corporate_role="admin")
    )
    return tenant_id, created


def provision_tenant(
    *,
    admin_id: str,
    max_users: int,
    subscription_row_id: Optional[str],
    name: Optional[str] = None,
) -> Tuple[str, bool]:
    """Standalone-transaction variant used by the webhook path."""
    try:
        with get_db_session() as session:
            return upsert_admin_tenant(
                session,
                admin_id=admin_id,
                max_users=max_users,
                subscription_row_id=subscription_row_id,
                name=name,
            )
    except IntegrityError:
        logger.info("tenant.provision.race_lost", extra={"user_id": admin_id})

    # The winner's row is committed now, so this pass takes the update branch.
    with get_db_session() as session:
        return upsert_admin_tenant(
            session,
            admin_id=admin_id,
            max_users=max_users,
            subscription_row_id=subscription_row_id,
            name=name,
        )


def _admin_tenant_for_account_change(session, user_id: str):
    user = session.execute(
        select(users.c.subscription_status).where(users.c.user_id == user_id)
    ).first()
    if user is None:
        raise NotFoundError(f"User not found: {user_id}", code="user_not_found")
    if user.subscription_status == "permanent":
        raise PermanentUserRestrictionError("Permanent license accounts cannot be suspended or reactivated")
    tenant = find_admin_tenant(session, user_id)
    if tenant is None:
        raise AuthorizationError("Only the tenant administrator can change the account status", code="not_tenant_admin")
    return tenant


def _set_account_status(session, tenant_id: str, status: str) -> None:
    session.execute(
        update(corporate_tenants).where(corporate_tenants.c.id == tenant_id).values(account_status=status)
    )


def suspend_tenant(user_id: str) -> str:
    """
    Suspend the tenant `user_id` administers. Members lose corporate access
    until it is reactivated. Suspending twice is a no-op.

    Returns:
        The tenant id.

    Raises:
        NotFoundError: unknown user
        PermanentUserRestrictionError: permanent license holder
        AuthorizationError: caller administers no tenant
    """
    with get_db_session() as session:
        tenant = _admin_tenant_for_account_change(session, user_id)
        if tenant.account_status != "suspended":
            _set_account_status(session, tenant.id, "suspended")
    logger.info("tenant.suspended", extra={"user_id": user_id, "tenant_id": tenant.id})
    return tenant.id


def reactivate_tenant(user_id: str) -> str:
    """
    Raises:
        NotFoundError: unknown user
        PermanentUserRestrictionError: permanent license holder
        AuthorizationError: caller administers no tenant
        ValidationError: tenant is not suspended
    """
    with get_db_session() as session:
        tenant = _admin_tenant_for_account_change(session, user_id)
        if tenant.account_status != "suspended":
            raise ValidationError("Account is not suspended", code="tenant_not_suspended")
        _set_account_status(session, tenant.id, "active")
    logger.info("tenant.reactivated", extra={"user_id": user_id, "tenant_id": tenant.id})
    return tenant.id

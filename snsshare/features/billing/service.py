"""
Billing service orchestrator.

Coordinates:
- Provider construction (Stripe when configured)
- Customer id bookkeeping
- Webhook verification (processing happens in the reconciler)
- Billing status for the dashboard
- End-of-period cancellation requests

All Stripe-specific code is in stripe_provider.py.
"""
import logging
from typing import Optional, Dict, Any

from sqlalchemy import select, update

from snsshare.core.clock import utcnow
from snsshare.core.config import settings
from snsshare.core.database import (
    get_db_session,
    billing_customers,
    subscriptions,
    corporate_tenants,
)
from snsshare.core.errors import NotFoundError, ValidationError
from snsshare.features.billing.lifecycle import SubscriptionStatus, parse_status
from snsshare.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookSecretMissing,
    WebhookEvent,
)
from snsshare.features.billing.stripe_provider import StripeProvider

logger = logging.getLogger("snsshare")


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        return None


def get_customer_id(session, user_id: str) -> Optional[str]:
    row = session.execute(
        select(billing_customers.c.stripe_customer_id).where(billing_customers.c.user_id == user_id)
    ).first()
    return row[0] if row else None


def find_user_by_customer(session, stripe_customer_id: Optional[str]) -> Optional[str]:
    if not stripe_customer_id:
        return None
    row = session.execute(
        select(billing_customers.c.user_id).where(billing_customers.c.stripe_customer_id == stripe_customer_id)
    ).first()
    return row[0] if row else None


def verify_webhook(headers: Dict[str, str], body: bytes, provider: Optional[BillingProvider] = None) -> WebhookEvent:
    """
    Verify and parse an incoming webhook. No business processing.

    Raises:
        BillingWebhookSecretMissing: billing or webhook secret not configured
        BillingWebhookError: signature or payload rejected
    """
    provider = provider or get_provider()
    if provider is None:
        raise BillingWebhookSecretMissing("Billing not enabled")
    return provider.construct_event(headers, body)


def get_billing_status(user_id: str) -> Dict[str, Any]:
    """
    Get user's billing status.

    Returns:
        {
            "enabled": bool,
            "plan": str | None,
            "interval": str | None,
            "status": str | None,
            "period_end": datetime | None,
            "cancel_at_period_end": bool,
            "tenant_id": str | None,
            "max_users": int | None,
        }
    """
    status: Dict[str, Any] = {
        "enabled": billing_enabled(),
        "plan": None,
        "interval": None,
        "status": None,
        "period_end": None,
        "cancel_at_period_end": False,
        "tenant_id": None,
        "max_users": None,
    }
    with get_db_session() as session:
        sub = session.execute(
            select(subscriptions).where(subscriptions.c.user_id == user_id)
        ).first()
        if sub:
            status.update(
                plan=sub.plan,
                interval=sub.interval,
                status=sub.status,
                period_end=sub.current_period_end,
                cancel_at_period_end=bool(sub.cancel_at_period_end),
            )
        tenant = session.execute(
            select(corporate_tenants.c.id, corporate_tenants.c.max_users)
            .where(corporate_tenants.c.admin_id == user_id)
        ).first()
        if tenant:
            status.update(tenant_id=tenant.id, max_users=tenant.max_users)
    return status


def set_cancel_at_period_end(user_id: str, cancel: bool) -> Dict[str, Any]:
    """
    Schedule (cancel=True) or withdraw (cancel=False) the end-of-period
    cancellation of the user's subscription. Repeating a request is a no-op.

    Returns:
        The billing status after the change (see get_billing_status).

    Raises:
        NotFoundError: the user has no subscription
        ValidationError: the subscription is not active or trialing
    """
    with get_db_session() as session:
        sub = session.execute(
            select(subscriptions.c.id, subscriptions.c.status, subscriptions.c.cancel_at_period_end)
            .where(subscriptions.c.user_id == user_id)
        ).first()
        if sub is None:
            raise NotFoundError("No subscription found", code="subscription_not_found")
        if parse_status(sub.status) not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            raise ValidationError(f"Subscription is {sub.status}", code="subscription_not_live")
        if bool(sub.cancel_at_period_end) != cancel:
            session.execute(
                update(subscriptions)
                .where(subscriptions.c.id == sub.id)
                .values(cancel_at_period_end=cancel, updated_at=utcnow())
            )
            logger.info(
                "billing.subscription.cancel_requested" if cancel else "billing.subscription.reactivated",
                extra={"user_id": user_id},
            )
    return get_billing_status(user_id)

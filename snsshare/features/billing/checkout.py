"""
Checkout initiation.

start_checkout() creates a one-time payment Stripe session for a plan (plus
optional one-tap seal bundle) and records the matching pending state locally:

1. resolve the plan (PlanNotFoundError if unknown)
2. reuse or create the Stripe customer
3. create the checkout session
4. in one transaction: customer row, pending subscription, order row,
   and for corporate plans the admin tenant

A processor failure raises before anything is written. A local failure after
the session exists is logged and the session is still returned; the
checkout.session.completed webhook rebuilds the local state from metadata.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from snsshare.core.config import settings
from snsshare.core.database import (
    get_db_session,
    billing_customers,
    checkout_orders,
    corporate_tenants,
    subscriptions,
)
from snsshare.core.errors import (
    ExternalServiceError,
    IncompleteShippingInfoError,
    InvalidBundledItemsError,
    NotFoundError,
    PermanentUserRestrictionError,
    SubscriptionActiveError,
    TenantSuspendedError,
    ValidationError,
)
from snsshare.features.billing import service as billing_service
from snsshare.features.billing.lifecycle import CHECKOUT_REPLACEABLE, SubscriptionStatus, parse_status
from snsshare.features.billing.provider import BillingProvider, BillingProviderError, LineItem
from snsshare.features.plans import catalog
from snsshare.features.tenants.service import upsert_admin_tenant
from snsshare.features.users.service import get_user
from snsshare.models.plan import PlanDefinition

logger = logging.getLogger("snsshare")

SEAL_UNIT_PRICE = 550
SEAL_SHIPPING_FEE = 185
SEAL_MAX_QUANTITY = 100
SEAL_ITEM_NAME = "One-tap seal"
SHIPPING_ITEM_NAME = "One-tap seal shipping"

LOCAL_WRITE_ATTEMPTS = 2


@dataclass
class ShippingInfo:
    postal_code: str = ""
    address: str = ""
    recipient_name: str = ""

    def is_complete(self) -> bool:
        return all(v and v.strip() for v in (self.postal_code, self.address, self.recipient_name))

    def as_dict(self) -> Dict[str, str]:
        return {
            "postal_code": self.postal_code.strip(),
            "address": self.address.strip(),
            "recipient_name": self.recipient_name.strip(),
        }


@dataclass
class BundledItems:
    quantity: int
    shipping: Optional[ShippingInfo] = None


@dataclass
class CheckoutResult:
    checkout_url: str
    session_id: str
    total_amount: int
    local_order_id: Optional[str]
    subscription_row_id: Optional[str] = None
    tenant_id: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)


def build_line_items(plan: PlanDefinition, bundled: Optional[BundledItems]) -> List[LineItem]:
    """
    Raises:
        InvalidBundledItemsError: quantity out of range
        IncompleteShippingInfoError: bundled items without a full address
    """
    items = [LineItem(name=plan.display_name, unit_amount=plan.amount)]
    if bundled is None or bundled.quantity == 0:
        return items
    if bundled.quantity < 0 or bundled.quantity > SEAL_MAX_QUANTITY:
        raise InvalidBundledItemsError(f"Seal quantity must be between 1 and {SEAL_MAX_QUANTITY}")
    if bundled.shipping is None or not bundled.shipping.is_complete():
        raise IncompleteShippingInfoError("Postal code, address and recipient name are required for bundled items")
    items.append(LineItem(name=SEAL_ITEM_NAME, unit_amount=SEAL_UNIT_PRICE, quantity=bundled.quantity))
    items.append(LineItem(name=SHIPPING_ITEM_NAME, unit_amount=SEAL_SHIPPING_FEE))
    return items


def _ensure_eligible(user_id: str, corporate: bool):
    user = get_user(user_id)
    if user is None:
        raise NotFoundError(f"User not found: {user_id}", code="user_not_found")
    if user.is_permanent:
        raise PermanentUserRestrictionError("Permanent license holders cannot start a checkout")

    with get_db_session() as session:
        sub = session.execute(
            select(subscriptions.c.status).where(subscriptions.c.user_id == user_id)
        ).first()
        if sub is not None and parse_status(sub.status) not in CHECKOUT_REPLACEABLE:
            raise SubscriptionActiveError(f"Subscription is already {sub.status}")
        if corporate:
            tenant = session.execute(
                select(corporate_tenants.c.account_status).where(corporate_tenants.c.admin_id == user_id)
            ).first()
            if tenant is not None and tenant.account_status == "suspended":
                raise TenantSuspendedError("Corporate account is suspended")
    return user


def _write_pending_state(
    *,
    user_id: str,
    customer_id: str,
    plan: PlanDefinition,
    corporate: bool,
    session_id: str,
    order_id: str,
    line_items: List[LineItem],
    bundled: Optional[BundledItems],
    company_name: Optional[str],
):
    with get_db_session() as session:
        if billing_service.get_customer_id(session, user_id) is None:
            session.execute(
                insert(billing_customers).values(user_id=user_id, stripe_customer_id=customer_id)
            )

        pending = dict(
            status=SubscriptionStatus.PENDING.value,
            plan=plan.storage_key,
            interval=plan.interval.value,
            price_id=plan.price_id,
            subscription_id=session_id,
            current_period_start=None,
            current_period_end=None,
            cancel_at_period_end=False,
            canceled_at=None,
        )
        existing = session.execute(
            select(subscriptions.c.id, subscriptions.c.status)
            .where(subscriptions.c.user_id == user_id)
            .with_for_update()
        ).first()
        if existing is not None:
            # a webhook may have activated the row since the eligibility check
            if parse_status(existing.status) not in CHECKOUT_REPLACEABLE:
                raise SubscriptionActiveError(f"Subscription is already {existing.status}")
            sub_row_id = existing.id
            session.execute(update(subscriptions).where(subscriptions.c.id == sub_row_id).values(**pending))
        else:
            sub_row_id = str(uuid4())
            session.execute(insert(subscriptions).values(id=sub_row_id, user_id=user_id, **pending))

        seal_quantity = bundled.quantity if bundled else 0
        session.execute(
            insert(checkout_orders).values(
                id=order_id,
                user_id=user_id,
                checkout_session_id=session_id,
                subscription_row_id=sub_row_id,
                plan_key=plan.tier.value,
                interval=plan.interval.value,
                is_corporate=corporate,
                status="pending",
                plan_amount=plan.amount,
                items_amount=seal_quantity * SEAL_UNIT_PRICE,
                shipping_fee=SEAL_SHIPPING_FEE if seal_quantity else 0,
                total_amount=sum(i.subtotal for i in line_items),
                items={"seal_quantity": seal_quantity} if seal_quantity else None,
                shipping=bundled.shipping.as_dict() if seal_quantity else None,
            )
        )

        tenant_id = None
        if corporate:
            tenant_id, _ = upsert_admin_tenant(
                session,
                admin_id=user_id,
                max_users=plan.seat_limit,
                subscription_row_id=sub_row_id,
                name=company_name,
            )
    return sub_row_id, tenant_id


def start_checkout(
    user_id: str,
    plan_key: str,
    interval: str,
    corporate: bool = False,
    *,
    bundled_items: Optional[BundledItems] = None,
    company_name: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> CheckoutResult:
    """
    Raises:
        PlanNotFoundError, ValidationError: bad plan or bundle input
        PermanentUserRestrictionError, TenantSuspendedError: caller not allowed
        SubscriptionActiveError: a live subscription already exists
        ExternalServiceError: Stripe failed or billing is disabled
    """
    plan = catalog.resolve(plan_key, interval)
    if corporate != plan.is_corporate:
        raise ValidationError(
            f"Plan {plan.tier.value} is {'a corporate' if plan.is_corporate else 'a personal'} plan",
            code="plan_mismatch",
        )
    line_items = build_line_items(plan, bundled_items)
    user = _ensure_eligible(user_id, corporate)

    provider = provider or billing_service.get_provider()
    if provider is None:
        raise ExternalServiceError("Billing is not configured", code="billing_disabled", status_code=503)

    with get_db_session() as session:
        customer_id = billing_service.get_customer_id(session, user_id)

    order_id = str(uuid4())
    metadata = {
        "user_id": user_id,
        "plan_key": plan.tier.value,
        "interval": plan.interval.value,
        "is_corporate": "true" if corporate else "false",
        "order_id": order_id,
    }
    try:
        if customer_id is None:
            customer_id = provider.ensure_customer(user_id, email=user.email, name=user.display_name)
        session_obj = provider.create_checkout_session(
            customer_id=customer_id,
            line_items=line_items,
            success_url=f"{settings.APP_BASE_URL}/dashboard/subscription?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.APP_BASE_URL}/dashboard/subscription?canceled=true",
            metadata=metadata,
        )
    except BillingProviderError as e:
        logger.warning("billing.checkout.provider_failed", extra={"user_id": user_id, "error": str(e)})
        raise ExternalServiceError(str(e))

    result = CheckoutResult(
        checkout_url=session_obj.url,
        session_id=session_obj.id,
        total_amount=sum(i.subtotal for i in line_items),
        local_order_id=None,
        line_items=line_items,
    )

    for attempt in range(1, LOCAL_WRITE_ATTEMPTS + 1):
        try:
            result.subscription_row_id, result.tenant_id = _write_pending_state(
                user_id=user_id,
                customer_id=customer_id,
                plan=plan,
                corporate=corporate,
                session_id=session_obj.id,
                order_id=order_id,
                line_items=line_items,
                bundled=bundled_items,
                company_name=company_name,
            )
            result.local_order_id = order_id
            break
        except IntegrityError:
            if attempt < LOCAL_WRITE_ATTEMPTS:
                logger.info("billing.checkout.write_retry", extra={"user_id": user_id, "attempt": attempt})
                continue
            logger.error("billing.checkout.consistency_window", exc_info=True, extra={"user_id": user_id, "session_id": session_obj.id})
        except SQLAlchemyError:
            logger.error("billing.checkout.consistency_window", exc_info=True, extra={"user_id": user_id, "session_id": session_obj.id})
            break

    logger.info(
        "billing.checkout.started",
        extra={
            "user_id": user_id,
            "plan": plan.storage_key,
            "corporate": corporate,
            "session_id": session_obj.id,
            "total_amount": result.total_amount,
            "tenant_id": result.tenant_id,
        },
    )
    return result

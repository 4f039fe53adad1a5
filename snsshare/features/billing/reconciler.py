"""
Subscription reconciler.

Applies verified Stripe events to local state. Runs after the webhook has
been acknowledged, so nothing here may surface to an HTTP caller: expected
failures raise ReconciliationError, which process_event() records on the
billing_events row and logs.

Every handler is idempotent. Replays and overlapping deliveries converge on
the same rows because writes are keyed by user and gated by the lifecycle
transition table.
"""
import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from uuid import uuid4

from snsshare.core.clock import utcnow
from snsshare.core.database import (
    get_db_session,
    billing_customers,
    billing_events,
    checkout_orders,
    subscriptions,
    users,
)
from snsshare.core.errors import AppError, ReconciliationError, ValidationError
from snsshare.core.logging import log_event
from snsshare.features.billing import service as billing_service
from snsshare.features.billing.lifecycle import (
    SubscriptionStatus,
    from_processor,
    require_transition,
)
from snsshare.features.billing.provider import WebhookEvent
from snsshare.features.plans import catalog
from snsshare.features.tenants.service import provision_tenant
from snsshare.features.users.service import set_subscription_status
from snsshare.models.plan import BillingInterval, PlanDefinition

logger = logging.getLogger("snsshare")

# Local subscription state -> users.subscription_status (None = leave as is)
USER_STATUS_FOR = {
    SubscriptionStatus.ACTIVE: "active",
    SubscriptionStatus.TRIALING: "trialing",
    SubscriptionStatus.CANCELED: "free",
}

PAID_STATUSES = ("paid", "no_payment_required")


def _ts(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc)


def add_interval(start: datetime, interval: BillingInterval) -> datetime:
    months = 12 if interval == BillingInterval.YEAR else 1
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def _fail(event: WebhookEvent, message: str, code: str, *, user_id: Optional[str] = None, **fields) -> ReconciliationError:
    log_event(
        "warning",
        "billing.reconcile.failed",
        user_id=user_id,
        event_type=event.event_type,
        error_code=code,
        extra={"event_id": event.event_id, "error": message, **fields},
    )
    return ReconciliationError(message, code=code)


def _resolve_user(event: WebhookEvent, *, fallback_user_id: Optional[str] = None) -> str:
    """
    Look up the local user by Stripe customer id.

    When the customer row is missing but the event metadata names the user
    (checkout local write failed), link the customer now.
    """
    customer_id = event.customer_id
    with get_db_session() as session:
        user_id = billing_service.find_user_by_customer(session, customer_id)
        if user_id:
            return user_id
        if fallback_user_id:
            known = session.execute(select(users.c.user_id).where(users.c.user_id == fallback_user_id)).first()
            if known:
                if customer_id and billing_service.get_customer_id(session, fallback_user_id) is None:
                    session.execute(
                        insert(billing_customers).values(user_id=fallback_user_id, stripe_customer_id=customer_id)
                    )
                return fallback_user_id
    raise _fail(event, f"No user for customer {customer_id}", "user_not_found", customer_id=customer_id)


def _plan_from_subscription(data: Dict[str, Any]) -> Optional[PlanDefinition]:
    items = (data.get("items") or {}).get("data") or []
    if items:
        plan = catalog.lookup_price(((items[0] or {}).get("price") or {}).get("id"))
        if plan is not None:
            return plan
    return _plan_from_metadata(data.get("metadata") or {})


def _plan_from_metadata(metadata: Dict[str, Any]) -> Optional[PlanDefinition]:
    plan_key = metadata.get("plan_key")
    if not plan_key:
        return None
    try:
        return catalog.resolve(plan_key, metadata.get("interval") or BillingInterval.MONTH.value)
    except ValidationError:
        return None


def _period(data: Dict[str, Any], key: str) -> Optional[datetime]:
    # Newer API versions moved the billing period onto the subscription items.
    value = data.get(key)
    if value is None:
        items = (data.get("items") or {}).get("data") or []
        if items:
            value = (items[0] or {}).get(key)
    return _ts(value)


def _upsert_subscription(
    event: WebhookEvent,
    user_id: str,
    target: SubscriptionStatus,
    values: Dict[str, Any],
    plan: Optional[PlanDefinition],
) -> str:
    """Move the user's subscription row to `target`, creating it if absent."""
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions.c.id, subscriptions.c.status, subscriptions.c.plan)
            .where(subscriptions.c.user_id == user_id)
            .with_for_update()
        ).first()
        if plan is not None:
            values = {**values, "plan": plan.storage_key, "interval": plan.interval.value, "price_id": plan.price_id}

        if row is not None:
            require_transition(row.status, target)
            session.execute(
                update(subscriptions)
                .where(subscriptions.c.id == row.id)
                .values(status=target.value, updated_at=utcnow(), **values)
            )
            return row.id

        if plan is None:
            raise _fail(event, "Cannot create a subscription without a known plan", "plan_unresolved", user_id=user_id)
        row_id = str(uuid4())
        session.execute(
            insert(subscriptions).values(id=row_id, user_id=user_id, status=target.value, **values)
        )
        return row_id


def _sync_user_status(
    user_id: str,
    target: SubscriptionStatus,
    *,
    trial_ends_at: Optional[datetime] = None,
    **extra_values,
) -> None:
    user_status = USER_STATUS_FOR.get(target)
    if target == SubscriptionStatus.TRIALING and trial_ends_at is not None:
        extra_values["trial_ends_at"] = trial_ends_at
    elif target == SubscriptionStatus.ACTIVE:
        # A paid subscription ends any trial window.
        extra_values["trial_ends_at"] = None
    with get_db_session() as session:
        if user_status:
            set_subscription_status(session, user_id, user_status)
        if extra_values:
            session.execute(update(users).where(users.c.user_id == user_id).values(**extra_values))


def _provision_corporate(event: WebhookEvent, user_id: str, plan: Optional[PlanDefinition], sub_row_id: str) -> None:
    """Separate step; a failure leaves the committed subscription in place."""
    if plan is None or not plan.is_corporate:
        return
    try:
        tenant_id, created = provision_tenant(
            admin_id=user_id,
            max_users=plan.seat_limit,
            subscription_row_id=sub_row_id,
        )
    except SQLAlchemyError as e:
        raise _fail(event, f"Tenant provisioning failed: {e}", "tenant_provision_failed", user_id=user_id)
    logger.info(
        "billing.reconcile.tenant_provisioned",
        extra={"user_id": user_id, "tenant_id": tenant_id, "tenant_created": created, "max_users": plan.seat_limit},
    )


def handle_subscription_upsert(event: WebhookEvent) -> None:
    data = event.data
    user_id = _resolve_user(event, fallback_user_id=event.metadata.get("user_id"))
    try:
        target = from_processor(data.get("status"))
    except ValidationError:
        raise _fail(event, f"Unknown subscription status {data.get('status')}", "unknown_status", user_id=user_id)
    plan = _plan_from_subscription(data)

    sub_row_id = _upsert_subscription(
        event,
        user_id,
        target,
        {
            "subscription_id": data.get("id"),
            "current_period_start": _period(data, "current_period_start"),
            "current_period_end": _period(data, "current_period_end"),
            "cancel_at_period_end": bool(data.get("cancel_at_period_end")),
            "canceled_at": _ts(data.get("canceled_at")),
        },
        plan,
    )
    # Only after the subscription row is committed.
    _sync_user_status(user_id, target, trial_ends_at=_ts(data.get("trial_end")))
    _provision_corporate(event, user_id, plan, sub_row_id)


def handle_subscription_deleted(event: WebhookEvent) -> None:
    data = event.data
    user_id = _resolve_user(event)
    _upsert_subscription(
        event,
        user_id,
        SubscriptionStatus.CANCELED,
        {
            "cancel_at_period_end": False,
            "canceled_at": _ts(data.get("canceled_at")) or utcnow(),
        },
        None,
    )
    _sync_user_status(user_id, SubscriptionStatus.CANCELED, corporate_role=None)


def handle_checkout_completed(event: WebhookEvent) -> None:
    data = event.data
    if data.get("payment_status") not in PAID_STATUSES:
        logger.info(
            "billing.reconcile.checkout_unpaid",
            extra={"event_id": event.event_id, "payment_status": data.get("payment_status")},
        )
        return

    metadata = event.metadata
    user_id = _resolve_user(event, fallback_user_id=metadata.get("user_id") or data.get("client_reference_id"))
    plan = _plan_from_metadata(metadata)

    with get_db_session() as session:
        order = session.execute(
            select(checkout_orders.c.plan_key, checkout_orders.c.interval)
            .where(checkout_orders.c.checkout_session_id == data.get("id"))
        ).first()
        if plan is None and order is not None:
            plan = catalog.resolve(order.plan_key, order.interval)
        session.execute(
            update(checkout_orders)
            .where(checkout_orders.c.checkout_session_id == data.get("id"))
            .where(checkout_orders.c.status == "pending")
            .values(status="paid", paid_at=_ts(event.created) or utcnow())
        )

    start = _ts(event.created) or utcnow()
    values: Dict[str, Any] = {
        "subscription_id": data.get("subscription") or data.get("id"),
        "current_period_start": start,
        "cancel_at_period_end": False,
        "canceled_at": None,
    }
    if plan is not None:
        values["current_period_end"] = add_interval(start, plan.interval)

    sub_row_id = _upsert_subscription(event, user_id, SubscriptionStatus.ACTIVE, values, plan)
    _sync_user_status(user_id, SubscriptionStatus.ACTIVE)
    _provision_corporate(event, user_id, plan, sub_row_id)


def handle_checkout_expired(event: WebhookEvent) -> None:
    session_id = event.data.get("id")
    with get_db_session() as session:
        session.execute(
            update(checkout_orders)
            .where(checkout_orders.c.checkout_session_id == session_id)
            .where(checkout_orders.c.status == "pending")
            .values(status="expired")
        )
        # Only the pending row created for this session; a newer checkout keeps its own.
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == session_id)
            .where(subscriptions.c.status == SubscriptionStatus.PENDING.value)
            .values(status=SubscriptionStatus.CANCELED.value, canceled_at=utcnow(), updated_at=utcnow())
        )


def _invoice_period_end(data: Dict[str, Any]) -> Optional[datetime]:
    lines = (data.get("lines") or {}).get("data") or []
    if lines:
        return _ts(((lines[0] or {}).get("period") or {}).get("end"))
    return None


def handle_invoice_paid(event: WebhookEvent) -> None:
    user_id = _resolve_user(event)
    values: Dict[str, Any] = {}
    period_end = _invoice_period_end(event.data)
    if period_end is not None:
        values["current_period_end"] = period_end
    _upsert_subscription(event, user_id, SubscriptionStatus.ACTIVE, values, None)
    _sync_user_status(user_id, SubscriptionStatus.ACTIVE)


def handle_invoice_failed(event: WebhookEvent) -> None:
    user_id = _resolve_user(event)
    _upsert_subscription(event, user_id, SubscriptionStatus.PAST_DUE, {}, None)


HANDLERS: Dict[str, Callable[[WebhookEvent], None]] = {
    "customer.subscription.created": handle_subscription_upsert,
    "customer.subscription.updated": handle_subscription_upsert,
    "customer.subscription.deleted": handle_subscription_deleted,
    "checkout.session.completed": handle_checkout_completed,
    "checkout.session.expired": handle_checkout_expired,
    "invoice.payment_succeeded": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_failed,
}


def _claim_event(event: WebhookEvent) -> bool:
    """
    Record the event and decide whether to process it.

    Processed events are skipped; events whose last attempt failed run again.
    """
    try:
        with get_db_session() as session:
            existing = session.execute(
                select(billing_events.c.processed).where(billing_events.c.stripe_event_id == event.event_id)
            ).first()
            if existing is not None:
                return not existing.processed
            session.execute(
                insert(billing_events).values(
                    stripe_event_id=event.event_id,
                    event_type=event.event_type,
                    payload_hash=event.payload_hash,
                    processed=False,
                )
            )
        return True
    except IntegrityError:
        # Race condition: a concurrent delivery recorded this event first
        return False


def _finish_event(event: WebhookEvent, error: Optional[str] = None) -> None:
    values: Dict[str, Any] = {"error": error}
    if error is None:
        values.update(processed=True, processed_at=utcnow())
    with get_db_session() as session:
        session.execute(
            update(billing_events)
            .where(billing_events.c.stripe_event_id == event.event_id)
            .values(**values)
        )


def process_event(event: WebhookEvent) -> str:
    """
    Apply one verified event.

    Returns one of "processed", "ignored", "duplicate" or "failed".
    Unexpected exceptions are recorded on the event row and re-raised for the
    supervising worker.
    """
    if not _claim_event(event):
        logger.info("billing.webhook.duplicate", extra={"event_id": event.event_id, "event_type": event.event_type})
        return "duplicate"

    handler = HANDLERS.get(event.event_type)
    if handler is None:
        _finish_event(event)
        logger.info("billing.webhook.ignored", extra={"event_id": event.event_id, "event_type": event.event_type})
        return "ignored"

    try:
        handler(event)
    except AppError as e:
        # ReconciliationError, IllegalTransitionError and friends: recorded, not raised
        _finish_event(event, error=f"{e.code}: {e.message}")
        logger.warning(
            "billing.webhook.not_applied",
            extra={"event_id": event.event_id, "event_type": event.event_type, "error_code": e.code},
        )
        return "failed"
    except Exception as e:
        _finish_event(event, error=repr(e))
        raise

    _finish_event(event)
    logger.info("billing.webhook.processed", extra={"event_id": event.event_id, "event_type": event.event_type})
    return "processed"

"""
Billing API routes.

Minimal surface:
- POST /api/billing/checkout: Start a one-time payment checkout
- POST /api/billing/webhook: Receive Stripe webhooks (ack first, process later)
- GET  /api/billing/status: Current subscription/tenant billing state
- POST /api/billing/cancel, /api/billing/reactivate: Toggle end-of-period cancellation
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from snsshare.core.auth import get_current_user_id
from snsshare.features.billing.checkout import BundledItems, ShippingInfo, start_checkout
from snsshare.features.billing.provider import BillingWebhookError, BillingWebhookSecretMissing
from snsshare.features.billing.service import get_billing_status, set_cancel_at_period_end, verify_webhook
from snsshare.features.billing.worker import WebhookSupervisor


router = APIRouter(prefix="/billing", tags=["billing"])
logger = logging.getLogger("snsshare")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingRequest(CamelModel):
    postal_code: str = ""
    address: str = ""
    recipient_name: str = ""


class BundledItemsRequest(CamelModel):
    quantity: int = Field(ge=0)
    shipping: Optional[ShippingRequest] = None


class CheckoutRequest(CamelModel):
    """Request to create checkout session."""
    plan: str
    interval: str = "month"
    is_corporate: bool = False
    company_name: Optional[str] = None
    bundled_items: Optional[BundledItemsRequest] = None


class CheckoutResponse(CamelModel):
    """Response with checkout URL."""
    checkout_url: str
    session_id: str
    local_order_id: Optional[str] = None
    total_amount: int


class BillingStatusResponse(BaseModel):
    """User billing status."""
    enabled: bool
    plan: Optional[str]
    interval: Optional[str]
    status: Optional[str]
    period_end: Optional[str]  # ISO8601
    cancel_at_period_end: bool
    tenant_id: Optional[str]
    max_users: Optional[int]


def get_supervisor(request: Request) -> WebhookSupervisor:
    supervisor = getattr(request.app.state, "webhook_supervisor", None)
    if supervisor is None:
        supervisor = WebhookSupervisor()
        request.app.state.webhook_supervisor = supervisor
    return supervisor


@router.post("/checkout", response_model=CheckoutResponse, response_model_by_alias=True)
def create_checkout(body: CheckoutRequest, user_id: str = Depends(get_current_user_id)):
    """
    Create a Stripe checkout session and the matching pending local records.

    Errors:
        400: plan_not_found, incomplete_shipping_info, invalid_bundled_items, plan_mismatch
        403: permanent_user_restriction, tenant_suspended
        409: subscription_active
        502/503: Stripe failure or billing disabled
    """
    bundled = None
    if body.bundled_items is not None:
        shipping = body.bundled_items.shipping
        bundled = BundledItems(
            quantity=body.bundled_items.quantity,
            shipping=ShippingInfo(**shipping.model_dump()) if shipping else None,
        )

    result = start_checkout(
        user_id,
        body.plan,
        body.interval,
        body.is_corporate,
        bundled_items=bundled,
        company_name=body.company_name,
    )
    return CheckoutResponse(
        checkout_url=result.checkout_url,
        session_id=result.session_id,
        local_order_id=result.local_order_id,
        total_amount=result.total_amount,
    )


@router.post("/webhook")
async def handle_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Verifies the signature, hands the event to the background supervisor and
    acknowledges without waiting for processing.

    Returns:
        200 {"received": true, "event_id": ...}
        200 {"received": false} when no webhook secret is configured (no retries)
        400 on signature or payload failure
    """
    body = await request.body()
    headers = dict(request.headers)

    try:
        event = verify_webhook(headers, body)
    except BillingWebhookSecretMissing as e:
        logger.error("billing.webhook.not_configured", extra={"error": str(e)})
        return {"received": False}
    except BillingWebhookError as e:
        logger.warning("billing.webhook.rejected", extra={"error": str(e)})
        raise HTTPException(status_code=400, detail={"code": "invalid_webhook", "message": str(e)})

    try:
        get_supervisor(request).submit(event)
    except Exception:
        # Still 200: a non-2xx would make Stripe retry an event we already verified.
        logger.error("billing.webhook.submit_failed", exc_info=True, extra={"event_id": event.event_id})
        return {"received": True, "event_id": event.event_id, "queued": False}

    logger.info("billing.webhook.acknowledged", extra={"event_id": event.event_id, "event_type": event.event_type})
    return {"received": True, "event_id": event.event_id}


def _status_response(status) -> BillingStatusResponse:
    period_end = status["period_end"]
    return BillingStatusResponse(
        enabled=status["enabled"],
        plan=status["plan"],
        interval=status["interval"],
        status=status["status"],
        period_end=period_end.isoformat() if period_end else None,
        cancel_at_period_end=status["cancel_at_period_end"],
        tenant_id=status["tenant_id"],
        max_users=status["max_users"],
    )


@router.get("/status", response_model=BillingStatusResponse)
def get_status(user_id: str = Depends(get_current_user_id)):
    return _status_response(get_billing_status(user_id))


@router.post("/cancel", response_model=BillingStatusResponse)
def cancel_subscription(user_id: str = Depends(get_current_user_id)):
    """
    Cancel at the end of the current period. Access continues until then.

    Errors:
        400: subscription_not_live
        404: subscription_not_found
    """
    return _status_response(set_cancel_at_period_end(user_id, True))


@router.post("/reactivate", response_model=BillingStatusResponse)
def reactivate_subscription(user_id: str = Depends(get_current_user_id)):
    """Withdraw a pending end-of-period cancellation."""
    return _status_response(set_cancel_at_period_end(user_id, False))

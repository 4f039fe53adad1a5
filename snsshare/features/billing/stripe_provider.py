"""
Stripe billing provider implementation.

Implements BillingProvider using the Stripe API. Checkout runs in one-time
payment mode with inline price_data so bundled items and the plan charge
share one session.
"""
import hashlib
import json
from typing import Dict, Any, List, Optional
import stripe

from snsshare.core.config import settings
from snsshare.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookSecretMissing,
    CheckoutSession,
    LineItem,
    WebhookEvent,
)


CURRENCY = "jpy"


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        customer_data: Dict[str, Any] = {"metadata": {"user_id": user_id}}
        if email:
            customer_data["email"] = email
        if name:
            customer_data["name"] = name
        try:
            customer = stripe.Customer.create(
                **customer_data,
                idempotency_key=f"customer-{user_id}",
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}")
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": CURRENCY,
                            "product_data": {"name": item.name},
                            "unit_amount": item.unit_amount,
                        },
                        "quantity": item.quantity,
                    }
                    for item in line_items
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata or {},
                client_reference_id=(metadata or {}).get("user_id"),
            )
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return CheckoutSession(id=session.id, url=session.url)

    def construct_event(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        if not self.webhook_secret:
            raise BillingWebhookSecretMissing("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            payload = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, sig_header, self.webhook_secret, stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(payload)
        except UnicodeDecodeError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")

        return parse_event(event, hashlib.sha256(body).hexdigest())


def parse_event(event: Dict[str, Any], payload_hash: str) -> WebhookEvent:
    try:
        event_id = event["id"]
        event_type = event["type"]
    except (KeyError, TypeError):
        raise BillingWebhookError("Event is missing id or type")
    data = (event.get("data") or {}).get("object") or {}
    return WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        data=data,
        payload_hash=payload_hash,
        created=event.get("created"),
        metadata=data.get("metadata") or {},
    )

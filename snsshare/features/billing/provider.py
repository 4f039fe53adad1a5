"""
Billing provider protocol.

Defines the interface the checkout and webhook paths need from a payment
processor. StripeProvider is the production implementation; tests substitute
a Mock.
"""
from typing import Protocol, Dict, Any, List, Optional
from dataclasses import dataclass, field


@dataclass
class LineItem:
    """One checkout line, priced inline (no pre-created processor price)."""
    name: str
    unit_amount: int  # JPY
    quantity: int = 1

    @property
    def subtotal(self) -> int:
        return self.unit_amount * self.quantity


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class WebhookEvent:
    """Verified processor event, reduced to what the reconciler reads."""
    event_id: str
    event_type: str
    data: Dict[str, Any]
    payload_hash: str
    created: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def customer_id(self) -> Optional[str]:
        customer = self.data.get("customer")
        if isinstance(customer, dict):
            return customer.get("id")
        return customer


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation
    - One-time payment checkout sessions
    - Webhook signature verification and parsing
    """

    webhook_secret: Optional[str]

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """
        Create a processor-side customer for the user.

        Returns:
            Provider customer ID

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        line_items: List[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CheckoutSession:
        """
        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def construct_event(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookSecretMissing: no webhook secret configured
            BillingWebhookError: signature invalid or payload malformed
        """
        ...


class BillingProviderError(Exception):
    """Base exception for billing provider errors."""
    pass


class BillingWebhookError(BillingProviderError):
    """Webhook signature or payload rejected."""
    pass


class BillingWebhookSecretMissing(BillingProviderError):
    """Webhook secret not configured; events cannot be verified."""
    pass

"""
snsshare/models/plan.py

Plan catalog models.

A plan is a (tier, interval) pair with a Stripe price, a JPY amount and a
seat limit. Every tier except personal is a corporate plan.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict


class PlanTier(str, Enum):
    PERSONAL = "personal"
    STARTER = "starter"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class PlanDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: PlanTier
    interval: BillingInterval
    price_id: str
    display_name: str
    amount: int  # JPY, tax included
    seat_limit: int
    is_corporate: bool

    @property
    def storage_key(self) -> str:
        """Value persisted in subscriptions.plan (``<tier>`` or ``<tier>_yearly``)."""
        if self.interval == BillingInterval.YEAR:
            return f"{self.tier.value}_yearly"
        return self.tier.value

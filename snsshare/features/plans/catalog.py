"""
snsshare/features/plans/catalog.py

Static plan catalog.

Handles:
- (tier, interval) -> price, display name, amount, seat limit
- Reverse lookup from Stripe price ids (webhook payloads)
- Priority-ordered classification of legacy plan strings
"""

from typing import Dict, Optional, Tuple, Union

from snsshare.core.config import settings
from snsshare.core.errors import PlanNotFoundError
from snsshare.models.plan import BillingInterval, PlanDefinition, PlanTier


YEARLY_SUFFIX = "_yearly"

# Per-tier configuration. Amounts in JPY.
DEFAULT_PLANS: Dict[PlanTier, dict] = {
    PlanTier.PERSONAL: {
        "name": "Personal plan",
        "amounts": {BillingInterval.MONTH: 500, BillingInterval.YEAR: 5000},
        "seat_limit": 1,
    },
    PlanTier.STARTER: {
        "name": "Starter plan",
        "amounts": {BillingInterval.MONTH: 3000, BillingInterval.YEAR: 30000},
        "seat_limit": 10,
    },
    PlanTier.BUSINESS: {
        "name": "Business plan",
        "amounts": {BillingInterval.MONTH: 12000, BillingInterval.YEAR: 120000},
        "seat_limit": 30,
    },
    PlanTier.ENTERPRISE: {
        "name": "Enterprise plan",
        "amounts": {BillingInterval.MONTH: 30000, BillingInterval.YEAR: 300000},
        "seat_limit": 50,
    },
}

_INTERVAL_LABELS = {BillingInterval.MONTH: "monthly", BillingInterval.YEAR: "yearly"}

# Checked top to bottom, first match wins. "business_plus" contains "business",
# so enterprise must be tested before business and business before starter.
CLASSIFICATION_ORDER: Tuple[Tuple[PlanTier, Tuple[str, ...]], ...] = (
    (PlanTier.ENTERPRISE, ("enterprise",)),
    (PlanTier.BUSINESS, ("business_plus", "business")),
    (PlanTier.STARTER, ("starter",)),
    (PlanTier.PERSONAL, ("personal",)),
)

# Seat thresholds used when only a tenant's max_users is known.
SEAT_THRESHOLDS: Tuple[Tuple[int, PlanTier], ...] = (
    (50, PlanTier.ENTERPRISE),
    (30, PlanTier.BUSINESS),
)


def _price_id(tier: PlanTier, interval: BillingInterval) -> str:
    return getattr(settings, f"STRIPE_PRICE_{tier.name}_{interval.name}")


def _coerce_tier(plan_key: Union[str, PlanTier]) -> PlanTier:
    try:
        return PlanTier(plan_key)
    except ValueError:
        raise PlanNotFoundError(f"Unknown plan: {plan_key}")


def _coerce_interval(interval: Union[str, BillingInterval]) -> BillingInterval:
    try:
        return BillingInterval(interval)
    except ValueError:
        raise PlanNotFoundError(f"Unknown billing interval: {interval}")


def resolve(plan_key: Union[str, PlanTier], interval: Union[str, BillingInterval]) -> PlanDefinition:
    """
    Look up a plan.

    Raises:
        PlanNotFoundError: unknown plan key or interval (never defaulted)
    """
    tier = _coerce_tier(plan_key)
    billing_interval = _coerce_interval(interval)
    config = DEFAULT_PLANS[tier]
    return PlanDefinition(
        tier=tier,
        interval=billing_interval,
        price_id=_price_id(tier, billing_interval),
        display_name=f"{config['name']} ({_INTERVAL_LABELS[billing_interval]})",
        amount=config["amounts"][billing_interval],
        seat_limit=config["seat_limit"],
        is_corporate=tier != PlanTier.PERSONAL,
    )


def all_plans():
    return [resolve(tier, interval) for tier in PlanTier for interval in BillingInterval]


def lookup_price(price_id: Optional[str]) -> Optional[PlanDefinition]:
    """Reverse lookup by Stripe price id; None when the price is not in the catalog."""
    if not price_id:
        return None
    for plan in all_plans():
        if plan.price_id == price_id:
            return plan
    return None


def parse_storage_key(plan: str) -> PlanDefinition:
    """Inverse of PlanDefinition.storage_key."""
    if plan.endswith(YEARLY_SUFFIX):
        return resolve(plan[: -len(YEARLY_SUFFIX)], BillingInterval.YEAR)
    return resolve(plan, BillingInterval.MONTH)


def interval_of(plan: Optional[str]) -> BillingInterval:
    if plan and plan.endswith(YEARLY_SUFFIX):
        return BillingInterval.YEAR
    return BillingInterval.MONTH


def classify_plan(plan: Optional[str]) -> Optional[PlanTier]:
    """Classify a free-form plan string (e.g. "permanent_business_plus")."""
    if not plan:
        return None
    normalized = plan.lower()
    for tier, needles in CLASSIFICATION_ORDER:
        if any(needle in normalized for needle in needles):
            return tier
    return None


def tier_for_seats(max_users: int) -> PlanTier:
    for threshold, tier in SEAT_THRESHOLDS:
        if max_users >= threshold:
            return tier
    return PlanTier.STARTER

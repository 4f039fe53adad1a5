"""
Subscription lifecycle state machine.

Local subscription rows move only along LEGAL_TRANSITIONS. Writing the same
state again is always allowed so replayed webhooks stay idempotent.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from snsshare.core.errors import IllegalTransitionError, ValidationError


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


S = SubscriptionStatus

LEGAL_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    S.PENDING: frozenset({S.ACTIVE, S.TRIALING, S.PAST_DUE, S.CANCELED}),
    S.TRIALING: frozenset({S.ACTIVE, S.PAST_DUE, S.CANCELED}),
    S.ACTIVE: frozenset({S.PAST_DUE, S.CANCELED}),
    S.PAST_DUE: frozenset({S.ACTIVE, S.CANCELED}),
    S.CANCELED: frozenset({S.PENDING, S.ACTIVE, S.TRIALING}),
}

# Stripe subscription statuses without a local equivalent of the same name
PROCESSOR_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "incomplete": S.PENDING,
    "incomplete_expired": S.CANCELED,
    "unpaid": S.PAST_DUE,
    "paused": S.PAST_DUE,
}

# A new checkout may only replace a row in one of these states
CHECKOUT_REPLACEABLE: FrozenSet[SubscriptionStatus] = frozenset({S.PENDING, S.CANCELED})


def parse_status(value: Union[str, SubscriptionStatus]) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown subscription status: {value}", code="unknown_subscription_status")


def from_processor(status: Optional[str]) -> SubscriptionStatus:
    """Map a Stripe subscription status onto the local lifecycle."""
    if status in PROCESSOR_STATUS_MAP:
        return PROCESSOR_STATUS_MAP[status]
    return parse_status(status or "")


def can_transition(current: Optional[Union[str, SubscriptionStatus]], target: Union[str, SubscriptionStatus]) -> bool:
    target_status = parse_status(target)
    if current is None:
        return True
    current_status = parse_status(current)
    if current_status == target_status:
        return True
    return target_status in LEGAL_TRANSITIONS[current_status]


def require_transition(current: Optional[Union[str, SubscriptionStatus]], target: Union[str, SubscriptionStatus]) -> SubscriptionStatus:
    """
    Raises:
        IllegalTransitionError: target is not reachable from current
    """
    if not can_transition(current, target):
        raise IllegalTransitionError(str(getattr(current, "value", current)), parse_status(target).value)
    return parse_status(target)

"""
snsshare/features/access/resolver.py

Access-tier resolution.

resolve_access() is pure: the same AccessSubject, `now` and operator list
always give the same AccessDecision. Rules are evaluated in priority order
and the first match wins:

1. operator allow-list        -> admin
2. subscription_status=permanent -> permanent
3. admin of an active tenant  -> corporate
4. member of an active tenant -> invited-member
5. everything else            -> personal
"""

from datetime import datetime
from typing import Iterable, List, Optional

from snsshare.features.plans import catalog
from snsshare.models.access import AccessDecision, AccessSubject, UserType
from snsshare.models.plan import BillingInterval, PlanTier
from snsshare.core.clock import as_utc


PERMANENT_DISPLAY_NAMES = {
    PlanTier.PERSONAL: "Personal",
    PlanTier.STARTER: "Starter (up to 10 users)",
    PlanTier.BUSINESS: "Business (up to 30 users)",
    PlanTier.ENTERPRISE: "Enterprise (up to 50 users)",
}

CORPORATE_FALLBACK_DISPLAY_NAME = "Corporate plan"

# Renamed plans whose stored key no longer matches the tier they bill as.
LEGACY_PLAN_TIERS = (("business_legacy", PlanTier.STARTER),)


def _is_operator(subject: AccessSubject, operator_emails: Iterable[str]) -> bool:
    if not subject.email:
        return False
    return subject.email.strip().lower() in {e.lower() for e in operator_emails}


def permanent_plan_type(subject: AccessSubject) -> PlanTier:
    """Subscription plan string first, then tenant seat count, else personal."""
    if subject.subscription is not None:
        tier = catalog.classify_plan(subject.subscription.plan)
        if tier is not None:
            return tier
    tenant = subject.admin_of_tenant or subject.tenant
    if tenant is not None:
        return catalog.tier_for_seats(tenant.max_users)
    return PlanTier.PERSONAL


def corporate_display_name(subject: AccessSubject) -> str:
    if subject.subscription is None:
        return CORPORATE_FALLBACK_DISPLAY_NAME
    plan = (subject.subscription.plan or "").lower()
    tier = next((t for key, t in LEGACY_PLAN_TIERS if key in plan), None) or catalog.classify_plan(plan)
    if tier is None or tier == PlanTier.PERSONAL:
        return CORPORATE_FALLBACK_DISPLAY_NAME
    interval = subject.subscription.interval or catalog.interval_of(subject.subscription.plan).value
    if interval not in (BillingInterval.MONTH.value, BillingInterval.YEAR.value):
        interval = BillingInterval.MONTH.value
    return catalog.resolve(tier, interval).display_name


def trial_active(subject: AccessSubject, now: datetime) -> bool:
    """Either the user row or the subscription row may carry the trialing flag."""
    trialing = subject.subscription_status == "trialing" or (
        subject.subscription is not None and subject.subscription.status == "trialing"
    )
    if not trialing or subject.trial_ends_at is None:
        return False
    return as_utc(subject.trial_ends_at) > as_utc(now)


def tenant_invariant_violations(subject: AccessSubject) -> List[str]:
    violations = []
    if subject.admin_of_tenant is not None and subject.tenant is not None:
        if subject.admin_of_tenant.id != subject.tenant.id:
            violations.append("dual_tenant_relation")
    return violations


def resolve_access(
    subject: AccessSubject,
    *,
    now: datetime,
    operator_emails: Optional[Iterable[str]] = None,
) -> AccessDecision:
    if _is_operator(subject, operator_emails or ()):
        return AccessDecision(
            user_type=UserType.ADMIN,
            is_admin=True,
            is_super_admin=True,
            has_corp_access=True,
            user_role="admin",
            has_active_plan=True,
            plan_display_name="Operator",
        )

    if subject.subscription_status == "permanent":
        plan_type = permanent_plan_type(subject)
        corporate = plan_type != PlanTier.PERSONAL
        tenant = subject.admin_of_tenant or subject.tenant
        return AccessDecision(
            user_type=UserType.PERMANENT,
            is_admin=corporate,
            is_corp_admin=corporate,
            has_corp_access=corporate,
            is_permanent_user=True,
            permanent_plan_type=plan_type,
            user_role="admin" if corporate else "personal",
            has_active_plan=True,
            plan_type="permanent",
            plan_display_name=f"Permanent license ({PERMANENT_DISPLAY_NAMES[plan_type]})",
            tenant_id=tenant.id if (corporate and tenant is not None) else None,
        )

    admin_tenant = subject.admin_of_tenant
    if admin_tenant is not None and not admin_tenant.is_suspended:
        return AccessDecision(
            user_type=UserType.CORPORATE,
            is_admin=True,
            is_corp_admin=True,
            has_corp_access=True,
            user_role="admin",
            has_active_plan=True,
            plan_type="corporate",
            plan_display_name=corporate_display_name(subject),
            tenant_id=admin_tenant.id,
        )

    member_tenant = subject.tenant
    if (
        admin_tenant is None
        and member_tenant is not None
        and subject.corporate_role == "member"
        and not member_tenant.is_suspended
    ):
        return AccessDecision(
            user_type=UserType.INVITED_MEMBER,
            has_corp_access=True,
            user_role="member",
            has_active_plan=True,
            plan_type="corporate",
            plan_display_name="Corporate member",
            tenant_id=member_tenant.id,
        )

    return _personal_decision(subject, now)


def _personal_decision(subject: AccessSubject, now: datetime) -> AccessDecision:
    subscription = subject.subscription
    has_personal_plan = subscription is not None and subscription.status == "active"
    in_trial = trial_active(subject, now)
    was_trialing = subject.subscription_status == "trialing" or (
        subscription is not None and subscription.status == "trialing"
    )

    if has_personal_plan:
        interval = subscription.interval or catalog.interval_of(subscription.plan).value
        label = "yearly" if interval == BillingInterval.YEAR.value else "monthly"
        display_name = f"Personal plan ({label})"
    elif in_trial:
        display_name = "Free trial"
    elif was_trialing:
        display_name = "Trial ended"
    else:
        display_name = "No plan"

    return AccessDecision(
        user_type=UserType.PERSONAL,
        user_role="personal",
        has_active_plan=has_personal_plan or in_trial,
        is_trial_period=in_trial,
        plan_type="personal",
        plan_display_name=display_name,
    )

"""
snsshare/features/access/navigation.py

Dashboard menus and redirect policy per access tier.

Every dashboard path belongs to one feature area. A tier may visit the areas
in its allowed set; any other area redirects to the tier's landing path.
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from snsshare.models.access import AccessDecision, MenuItem, NavigationPolicy, UserType
from snsshare.models.plan import PlanTier


class FeatureArea(str, Enum):
    ADMIN = "admin"
    CORPORATE = "corporate"
    CORPORATE_MEMBER = "corporate-member"
    PERSONAL = "personal"
    SHARED = "shared"


DASHBOARD_ROOT = "/dashboard"

# Longest prefix wins, so /dashboard/corporate-member is never read as /dashboard/corporate.
AREA_PREFIXES: Tuple[Tuple[str, FeatureArea], ...] = (
    ("/dashboard/corporate-member", FeatureArea.CORPORATE_MEMBER),
    ("/dashboard/corporate", FeatureArea.CORPORATE),
    ("/dashboard/admin", FeatureArea.ADMIN),
    ("/dashboard/subscription", FeatureArea.SHARED),
    ("/dashboard/profile", FeatureArea.PERSONAL),
    ("/dashboard/links", FeatureArea.PERSONAL),
    ("/dashboard/design", FeatureArea.PERSONAL),
    ("/dashboard/share", FeatureArea.PERSONAL),
    ("/dashboard/tutorial", FeatureArea.PERSONAL),
    ("/dashboard/security", FeatureArea.PERSONAL),
)


def _item(title: str, href: str, icon: str) -> MenuItem:
    return MenuItem(title=title, href=href, icon=icon)


def _divider(title: str, anchor: str) -> MenuItem:
    return MenuItem(title=title, href=f"#{anchor}", is_divider=True)


ADMIN_MENU = [
    _item("Operator dashboard", "/dashboard/admin", "HiShieldCheck"),
    _divider("Finance", "financial-divider"),
    _item("Financial dashboard", "/dashboard/admin/financial", "HiCurrencyDollar"),
    _item("Revenue", "/dashboard/admin/stripe/revenue", "HiLightningBolt"),
    _divider("System", "system-divider"),
    _item("Users", "/dashboard/admin/users", "HiUsers"),
    _item("Subscriptions", "/dashboard/admin/subscriptions", "HiCreditCard"),
    _item("One-tap seal orders", "/dashboard/admin/one-tap-seal-orders", "HiLightningBolt"),
    _item("Cancellation requests", "/dashboard/admin/cancel-requests", "HiExclamationCircle"),
    _item("Profiles and QR codes", "/dashboard/admin/profiles", "HiEye"),
    _item("Permanent licenses", "/dashboard/admin/permissions", "HiKey"),
    _item("Notices", "/dashboard/admin/notifications", "HiBell"),
]

INVITED_MEMBER_MENU = [
    _item("Overview", "/dashboard/corporate-member", "HiUser"),
    _item("Edit profile", "/dashboard/corporate-member/profile", "HiUser"),
    _item("SNS and links", "/dashboard/corporate-member/links", "HiLink"),
    _item("Design", "/dashboard/corporate-member/design", "HiColorSwatch"),
    _item("Sharing", "/dashboard/corporate-member/share", "HiShare"),
]

CORPORATE_MENU = [
    _item("Corporate dashboard", "/dashboard/corporate", "HiOfficeBuilding"),
    _item("Users", "/dashboard/corporate/users", "HiUsers"),
    _item("Departments", "/dashboard/corporate/departments", "HiTemplate"),
    _item("Shared SNS settings", "/dashboard/corporate/sns", "HiLink"),
    _item("Branding", "/dashboard/corporate/branding", "HiColorSwatch"),
    _item("Account settings", "/dashboard/corporate/settings", "HiCog"),
    _divider("Member features", "member-divider"),
    _item("Member profile", "/dashboard/corporate-member", "HiUser"),
    _item("Plan", "/dashboard/subscription", "HiCreditCard"),
]

PERSONAL_MENU = [
    _item("Dashboard", "/dashboard", "HiHome"),
    _item("Edit profile", "/dashboard/profile", "HiUser"),
    _item("SNS and links", "/dashboard/links", "HiLink"),
    _item("Design", "/dashboard/design", "HiColorSwatch"),
    _item("Sharing", "/dashboard/share", "HiShare"),
    _item("Tutorial videos", "/dashboard/tutorial", "HiPlay"),
    _item("Security", "/dashboard/security", "HiShieldCheck"),
    _item("Plan", "/dashboard/subscription", "HiCreditCard"),
]

ALL_AREAS = frozenset(FeatureArea)

# (menu, landing path, allowed areas) per effective tier
_TIER_RULES: Dict[str, Tuple[List[MenuItem], str, FrozenSet[FeatureArea]]] = {
    "admin": (ADMIN_MENU, "/dashboard/admin", ALL_AREAS),
    "corporate": (
        CORPORATE_MENU,
        "/dashboard/corporate",
        frozenset({FeatureArea.CORPORATE, FeatureArea.CORPORATE_MEMBER, FeatureArea.SHARED}),
    ),
    "invited-member": (
        INVITED_MEMBER_MENU,
        "/dashboard/corporate-member",
        frozenset({FeatureArea.CORPORATE_MEMBER, FeatureArea.SHARED}),
    ),
    "personal": (
        PERSONAL_MENU,
        DASHBOARD_ROOT,
        frozenset({FeatureArea.PERSONAL, FeatureArea.SHARED}),
    ),
}


def feature_area(path: Optional[str]) -> Optional[FeatureArea]:
    """Feature area for a path, or None when the path is outside the dashboard."""
    if not path:
        return None
    path = path.split("?", 1)[0].rstrip("/") or "/"
    if path == DASHBOARD_ROOT:
        return FeatureArea.PERSONAL
    if not path.startswith(DASHBOARD_ROOT + "/"):
        return None
    for prefix, area in AREA_PREFIXES:
        if path == prefix or path.startswith(prefix + "/"):
            return area
    return FeatureArea.SHARED


def effective_tier(decision: AccessDecision) -> str:
    if decision.user_type == UserType.PERMANENT:
        if decision.permanent_plan_type == PlanTier.PERSONAL:
            return "personal"
        return "corporate"
    return decision.user_type.value


def build_policy(decision: AccessDecision, current_path: Optional[str] = None) -> NavigationPolicy:
    tier = effective_tier(decision)
    menu, landing, allowed = _TIER_RULES[tier]
    area = feature_area(current_path)

    should_redirect = False
    redirect_path = None
    # Invited members have no personal dashboard, so personal paths have no alternate.
    no_alternate = tier == "invited-member" and area == FeatureArea.PERSONAL
    if area is not None and area not in allowed and not no_alternate:
        should_redirect = True
        redirect_path = landing

    return NavigationPolicy(
        menu_items=list(menu),
        default_path=landing,
        should_redirect=should_redirect,
        redirect_path=redirect_path,
    )

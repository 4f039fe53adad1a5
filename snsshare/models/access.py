"""
snsshare/models/access.py

Inputs and outputs of access-tier resolution.

AccessSubject is an immutable snapshot of everything the resolver reads;
AccessDecision and NavigationPolicy are derived per request and never persisted.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from snsshare.models.plan import PlanTier


class UserType(str, Enum):
    ADMIN = "admin"
    CORPORATE = "corporate"
    PERSONAL = "personal"
    PERMANENT = "permanent"
    INVITED_MEMBER = "invited-member"


class TenantSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    account_status: str = "active"
    max_users: int

    @property
    def is_suspended(self) -> bool:
        return self.account_status == "suspended"


class SubscriptionSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    plan: str
    interval: str = "month"


class AccessSubject(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    subscription_status: str = "free"
    trial_ends_at: Optional[datetime] = None
    corporate_role: Optional[str] = None
    subscription: Optional[SubscriptionSnapshot] = None
    admin_of_tenant: Optional[TenantSnapshot] = None
    tenant: Optional[TenantSnapshot] = None


class AccessDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_type: UserType
    is_admin: bool = False
    is_super_admin: bool = False
    is_corp_admin: bool = False
    has_corp_access: bool = False
    is_permanent_user: bool = False
    permanent_plan_type: Optional[PlanTier] = None
    user_role: Optional[str] = None
    has_active_plan: bool = False
    is_trial_period: bool = False
    plan_type: Optional[str] = None
    plan_display_name: str
    tenant_id: Optional[str] = None


class MenuItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    href: str
    icon: str = ""
    is_divider: bool = False


class NavigationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    menu_items: List[MenuItem]
    default_path: str
    should_redirect: bool = False
    redirect_path: Optional[str] = None

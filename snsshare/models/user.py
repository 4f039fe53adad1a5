"""
snsshare/models/user.py

User model with billing and corporate-role attributes.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


SUBSCRIPTION_STATUSES = ("free", "trialing", "active", "permanent", "grace_period_expired")
CORPORATE_ROLES = ("admin", "member")


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    company_name: Optional[str] = None
    subscription_status: str = "free"
    trial_ends_at: Optional[datetime] = None
    corporate_role: Optional[str] = None
    tenant_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_permanent(self) -> bool:
        return self.subscription_status == "permanent"

    @staticmethod
    def normalized_display_name(user_id: str, display_name: Optional[str]) -> str:
        if display_name and display_name.strip():
            return display_name.strip()
        return f"user_{user_id[-6:]}"

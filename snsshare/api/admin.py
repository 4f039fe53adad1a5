"""Operator-only actions."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from snsshare.core.auth import get_current_user_id
from snsshare.features.users.service import grant_permanent


router = APIRouter(prefix="/admin", tags=["admin"])


class GrantPermanentRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str


class GrantPermanentResponse(BaseModel):
    user_id: str
    subscription_status: str
    tenant_id: Optional[str] = None


@router.post("/grant-permanent", response_model=GrantPermanentResponse)
def grant_permanent_access(body: GrantPermanentRequest, user_id: str = Depends(get_current_user_id)):
    """
    Errors:
        403: not_operator
        404: user_not_found
    """
    user, tenant_id = grant_permanent(user_id, body.user_id)
    return GrantPermanentResponse(
        user_id=user.user_id,
        subscription_status=user.subscription_status,
        tenant_id=tenant_id,
    )

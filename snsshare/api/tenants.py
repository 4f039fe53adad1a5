"""
Corporate account status.

- POST /api/tenants/suspend: Admin suspends their tenant
- POST /api/tenants/reactivate: Admin lifts the suspension
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from snsshare.core.auth import get_current_user_id
from snsshare.features.tenants.service import reactivate_tenant, suspend_tenant


router = APIRouter(prefix="/tenants", tags=["tenants"])


class AccountStatusResponse(BaseModel):
    tenant_id: str
    account_status: str


@router.post("/suspend", response_model=AccountStatusResponse)
def suspend(user_id: str = Depends(get_current_user_id)):
    """
    Errors:
        403: not_tenant_admin, permanent_user_restriction
        404: user_not_found
    """
    return AccountStatusResponse(tenant_id=suspend_tenant(user_id), account_status="suspended")


@router.post("/reactivate", response_model=AccountStatusResponse)
def reactivate(user_id: str = Depends(get_current_user_id)):
    """
    Errors:
        400: tenant_not_suspended
        403: not_tenant_admin, permanent_user_restriction
        404: user_not_found
    """
    return AccountStatusResponse(tenant_id=reactivate_tenant(user_id), account_status="active")

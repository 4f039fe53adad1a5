"""
Authorization query.

GET /api/access returns the access decision and navigation policy for the
current user. Clients may cache it briefly; server-side checks always call
resolve_for_user() again.
"""
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel

from snsshare.core.auth import get_current_user_id
from snsshare.features.access.service import resolve_for_user
from snsshare.models.access import AccessDecision, NavigationPolicy


router = APIRouter(prefix="/access", tags=["access"])

CLIENT_CACHE_SECONDS = 120


class AccessResponse(BaseModel):
    decision: AccessDecision
    navigation: NavigationPolicy


def _current_path(path: Optional[str], request: Request) -> Optional[str]:
    if path:
        return path
    referer = request.headers.get("referer")
    if referer:
        return urlparse(referer).path or None
    return None


@router.get("", response_model=AccessResponse)
def get_access(
    request: Request,
    response: Response,
    path: Optional[str] = Query(None, description="Page being loaded"),
    user_id: str = Depends(get_current_user_id),
):
    decision, navigation = resolve_for_user(user_id, _current_path(path, request))
    response.headers["Cache-Control"] = f"private, max-age={CLIENT_CACHE_SECONDS}"
    return AccessResponse(decision=decision, navigation=navigation)

"""
Auth utilities for the API.

Validates session JWTs (HS256, shared secret) and extracts user_id from the
request. Falls back to the X-User-Id header outside production (tests, local
tooling).
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import logging

import jwt

from snsshare.core.config import settings

logger = logging.getLogger(__name__)


def verify_session_jwt(token: str) -> Optional[str]:
    """
    Verify a session JWT and extract user_id from its 'sub' claim.

    Returns None when no AUTH_JWT_SECRET is configured.

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.AUTH_JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.AUTH_JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Local/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Session JWT from Authorization header
    2. X-User-Id header (non-production only)
    3. Raise 401 Unauthorized
    """
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_session_jwt(auth_header[7:])
        if user_id:
            request.state.user_id = user_id
            return user_id

    if x_user_id and settings.header_auth_allowed():
        request.state.user_id = x_user_id
        return x_user_id

    raise HTTPException(
        status_code=401,
        detail={
            "code": "unauthorized",
            "message": "Missing Authorization (Bearer JWT) or X-User-Id header",
        },
    )

"""Error taxonomy and FastAPI handlers."""

import logging
from typing import Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from snsshare.core.logging import get_request_id


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class AuthorizationError(AppError):
    """Caller is authenticated but not allowed (distinct from 401)."""
    code = "forbidden"
    status_code = 403


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class ExternalServiceError(AppError):
    """Payment processor unreachable or returned an error."""
    code = "external_service_error"
    status_code = 502


class ReconciliationError(AppError):
    """Webhook-side failure. Logged and recorded, never rendered to a caller."""
    code = "reconciliation_error"
    status_code = 500


class PlanNotFoundError(ValidationError):
    code = "plan_not_found"


class IncompleteShippingInfoError(ValidationError):
    code = "incomplete_shipping_info"


class InvalidBundledItemsError(ValidationError):
    code = "invalid_bundled_items"


class PermanentUserRestrictionError(AuthorizationError):
    code = "permanent_user_restriction"


class TenantSuspendedError(AuthorizationError):
    code = "tenant_suspended"


class SubscriptionActiveError(ConflictError):
    code = "subscription_active"


class IllegalTransitionError(ReconciliationError):
    code = "illegal_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Subscription cannot move from {current} to {target}")
        self.current = current
        self.target = target


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str) -> dict:
    return {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid)
    logger = logging.getLogger("snsshare")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    response = JSONResponse(status_code=exc.status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if isinstance(exc.detail, dict):
        code = exc.detail.get("code", "http_error")
        message = exc.detail.get("message", "HTTP error")
    else:
        code = {401: "unauthorized", 404: "not_found"}.get(exc.status_code, "http_error")
        message = exc.detail if exc.detail else "HTTP error"
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("snsshare")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    response = JSONResponse(status_code=exc.status_code, content=payload, headers=exc.headers)
    response.headers["x-request-id"] = rid
    return response


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("snsshare")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", "Unexpected error", rid)
    response = JSONResponse(status_code=500, content=payload)
    response.headers["x-request-id"] = rid
    return response

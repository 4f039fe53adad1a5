"""
Health endpoints for operational monitoring (no secrets exposed).
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from snsshare.core.database import check_connection
from snsshare.features.billing.service import billing_enabled

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz(request: Request):
    """Readiness: DB connectivity, billing config and webhook backlog."""
    db_ok = check_connection()
    supervisor = getattr(request.app.state, "webhook_supervisor", None)
    payload = {
        "ok": db_ok,
        "db": {"connected": db_ok},
        "billing_enabled": billing_enabled(),
        "webhooks_in_flight": supervisor.in_flight if supervisor else 0,
        "webhook_failures": len(supervisor.failures) if supervisor else 0,
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=payload)

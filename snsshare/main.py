import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from snsshare/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from snsshare.core.config import settings, validate_config  # noqa: E402
from snsshare.core.database import create_all_tables  # noqa: E402
from snsshare.core.logging import configure_logging  # noqa: E402
from snsshare.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from snsshare.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from snsshare.api import access, admin, billing, health, tenants  # noqa: E402
from snsshare.features.billing.worker import WebhookSupervisor  # noqa: E402

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("snsshare")
    logger.info("Starting snsshare backend...")
    create_all_tables()
    app.state.webhook_supervisor = WebhookSupervisor()
    try:
        yield
    finally:
        await app.state.webhook_supervisor.drain(timeout=settings.WEBHOOK_DRAIN_TIMEOUT_SECONDS)
        logger.info("Stopping snsshare backend...")


app = FastAPI(title="snsshare - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# CORS (adjust origins in production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.APP_BASE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(access.router, prefix="/api", tags=["access"])
app.include_router(tenants.router, prefix="/api", tags=["tenants"])
app.include_router(admin.router, prefix="/api", tags=["admin"])
app.include_router(health.root_router, tags=["health"])

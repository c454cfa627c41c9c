"""
Storefront API - FastAPI application

Order checkout, payment verification, returns/refunds and shipment
tracking on DynamoDB.
"""

import time
import asyncio
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.v1 import api_v1_router
from .core.config import settings
from .core.database import get_db_manager
from .core.exceptions import (
    StorefrontException,
    request_validation_exception_handler,
    storefront_exception_handler,
    unhandled_exception_handler,
)
from .core.logging_config import set_request_id, setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager
    Handles startup and shutdown events
    """
    logger.info(f"Starting {settings.PROJECT_NAME} v{__version__} ({settings.ENVIRONMENT})")
    app.state.startup_time = time.time()
    yield
    logger.info(f"Shutting down {settings.PROJECT_NAME}")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Order lifecycle, payments, returns and shipments",
    version=__version__,
    lifespan=lifespan,
)

# =============================================================================
# MIDDLEWARE CONFIGURATION
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Delivery-Token"],
    expose_headers=["X-Request-ID"]
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Propagate or assign a request id and echo it back"""
    request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
    request.state.request_id = request_id
    set_request_id(request_id)
    try:
        response = await call_next(request)
    finally:
        set_request_id(None)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-API-Version"] = __version__
    return response


@app.middleware("http")
async def add_response_time(request: Request, call_next):
    """Add response time header"""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

app.add_exception_handler(StorefrontException, storefront_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# =============================================================================
# ROUTES
# =============================================================================

app.include_router(api_v1_router)


@app.get("/health", tags=["health"])
async def health_check():
    """
    Basic health check endpoint

    Returns:
        Service status plus DynamoDB reachability
    """
    db_status = await asyncio.to_thread(get_db_manager().health_check)
    return {
        "status": "healthy" if db_status.get("dynamodb") else "degraded",
        "timestamp": time.time(),
        "version": __version__,
        "environment": settings.ENVIRONMENT,
        "services": db_status,
    }

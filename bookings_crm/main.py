import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import logging

from bookings_crm.api.v1.router import router as api_v1_router
from bookings_crm.core.exceptions import (
    ConcurrentUpdateError,
    DegradedServiceError,
    DuplicateLeadError,
    LeadNotFoundError,
    LeadPermissionError,
    LeadValidationError,
    TransientStoreError,
    UserNotFoundError,
)
from bookings_crm.core.config import settings as app_settings
from bookings_crm.core.rate_limit import limiter
from bookings_crm.core.database import AsyncSessionLocal
from bookings_crm.services.collaborators import HttpMessagingService
from bookings_crm.services.request_guard import RequestGuard
from bookings_crm.services.side_effects import SideEffectDispatcher, start_side_effect_loop

# Configure logging
logging.basicConfig(level=app_settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application-level state and background tasks."""
    app.state.request_guard = RequestGuard()
    # Start the outbox worker that performs emails, SMS, stats and callbacks
    dispatcher = SideEffectDispatcher(HttpMessagingService())
    worker_task = asyncio.create_task(
        start_side_effect_loop(AsyncSessionLocal, dispatcher)
    )
    logger.info("Background side-effect worker scheduled")
    yield
    # Shutdown: cancel the background task
    worker_task.cancel()
    try:
        await worker_task
    except asyncio.CancelledError:
        logger.info("Background side-effect worker stopped")


app = FastAPI(
    title="Bookings CRM",
    description="Lead lifecycle, booking history and lead filtering for a photography bookings CRM",
    version="0.1.0",
    lifespan=lifespan,
)

# Attach rate limiter state so slowapi middleware can find it
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware – restricted to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in app_settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.exception_handler(LeadValidationError)
async def lead_validation_handler(request: Request, exc: LeadValidationError):
    logger.warning("Invalid lead change: %s", exc.detail)
    return JSONResponse(
        status_code=422,
        content={"detail": exc.detail, "type": "invalid_lead_change"},
    )


@app.exception_handler(LeadPermissionError)
async def lead_permission_handler(request: Request, exc: LeadPermissionError):
    logger.warning("Permission denied: %s", exc.detail)
    return JSONResponse(
        status_code=403,
        content={"detail": exc.detail, "type": "permission_denied"},
    )


@app.exception_handler(LeadNotFoundError)
async def lead_not_found_handler(request: Request, exc: LeadNotFoundError):
    logger.warning("Lead not found: %s", exc.detail)
    return JSONResponse(
        status_code=404,
        content={"detail": exc.detail, "type": "lead_not_found"},
    )


@app.exception_handler(UserNotFoundError)
async def user_not_found_handler(request: Request, exc: UserNotFoundError):
    logger.warning("User not found: %s", exc.detail)
    return JSONResponse(
        status_code=404,
        content={"detail": exc.detail, "type": "user_not_found"},
    )


@app.exception_handler(DuplicateLeadError)
async def duplicate_lead_handler(request: Request, exc: DuplicateLeadError):
    logger.warning("Duplicate lead detected: %s", exc.detail)
    return JSONResponse(
        status_code=409,
        content={"detail": exc.detail, "type": "duplicate_lead"},
    )


@app.exception_handler(ConcurrentUpdateError)
async def concurrent_update_handler(request: Request, exc: ConcurrentUpdateError):
    logger.warning("Concurrent update: %s", exc.detail)
    return JSONResponse(
        status_code=409,
        content={"detail": exc.detail, "type": "concurrent_update"},
    )


@app.exception_handler(DegradedServiceError)
async def degraded_service_handler(request: Request, exc: DegradedServiceError):
    logger.error("Degraded service: %s", exc.detail)
    return JSONResponse(
        status_code=503,
        content={"detail": exc.detail, "type": "service_degraded"},
    )


@app.exception_handler(TransientStoreError)
async def transient_store_handler(request: Request, exc: TransientStoreError):
    logger.error("Transient storage failure: %s", exc.detail)
    return JSONResponse(
        status_code=503,
        content={"detail": exc.detail, "type": "service_degraded"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Request validation error: %s", exc.errors())
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_encoder(exc.errors()),
            "type": "validation_error",
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for unexpected/unhandled exceptions.

    Returns a generic 500 response so that raw stack traces are never
    leaked to the client.
    """
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An unexpected internal error occurred. Please try again later.",
            "type": "internal_server_error",
        },
    )

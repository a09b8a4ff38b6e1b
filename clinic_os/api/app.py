"""FastAPI application for clinic-os."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_os import __version__
from clinic_os.api.middleware import APIKeyMiddleware, RequestLoggingMiddleware
from clinic_os.api.routes import auth, health, scheduling, waitlist
from clinic_os.config import get_settings
from clinic_os.core.database import init_db
from clinic_os.scheduling.errors import (
    AlreadyProcessed,
    NoAvailableSlot,
    NotFound,
    SchedulingError,
    SlotNoLongerAvailable,
    StorageFailure,
)

logger = logging.getLogger(__name__)

NO_SLOT_MESSAGE = "No slot could be found, try again later"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting clinic-os API")
    settings = get_settings()
    if settings.is_sqlite:
        await init_db()
    logger.info("clinic-os API started successfully")

    yield

    logger.info("Shutting down clinic-os API")


def scheduling_error_response(exc: SchedulingError) -> JSONResponse:
    """Map an engine error onto its HTTP status and error body."""
    if isinstance(exc, NotFound):
        status_code, detail = 404, exc.message
    elif isinstance(exc, AlreadyProcessed):
        status_code, detail = 409, exc.message
    elif isinstance(exc, (NoAvailableSlot, SlotNoLongerAvailable)):
        status_code, detail = 409, NO_SLOT_MESSAGE
    elif isinstance(exc, StorageFailure):
        status_code, detail = 503, "Scheduling storage is unavailable"
    else:
        status_code, detail = 400, exc.message
    return JSONResponse(status_code=status_code, content={"error": exc.code, "detail": detail})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="clinic-os API",
        description="Scheduling and waiting-list resolution for multi-tenant clinics",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    if settings.api_key:
        app.add_middleware(APIKeyMiddleware, api_key=settings.api_key)

    app.include_router(health.router, tags=["health"])
    app.include_router(auth.router, prefix="/api/v1", tags=["auth"])
    app.include_router(scheduling.router, prefix="/api/v1", tags=["scheduling"])
    app.include_router(waitlist.router, prefix="/api/v1", tags=["waiting-list"])

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        logger.warning(f"Scheduling error on {request.method} {request.url.path}: [{exc.code}] {exc.message}")
        return scheduling_error_response(exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app

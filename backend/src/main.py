# pyright: reportMissingTypeStubs=false
"""
Clinic Scheduling Backend API

A FastAPI application exposing the clinic resource and procedure
scheduling engine.

Features:
- Resource catalog, procedure definitions and availability windows
- Slot generation and conflict-safe appointment booking
- PostgreSQL database with SQLAlchemy ORM
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.clinic import (
    appointments_router,
    availability_router,
    procedures_router,
    resources_router,
    slots_router,
)
from core.config import AUTO_CREATE_TABLES
from core.constants import CORS_ORIGINS
from core.database import create_tables
from core.exceptions import (
    ConflictError,
    InactiveResourceError,
    InsufficientInventoryError,
    NotFoundError,
    SchedulingError,
    StorageError,
    ValidationError,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🏥 Clinic Scheduling API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Clinic Scheduling Backend API")

    if AUTO_CREATE_TABLES:
        try:
            create_tables()
            logger.info("✅ Database tables created")
        except Exception as e:
            logger.exception(f"❌ Failed to create database tables: {e}")

    yield

    logger.info("🛑 Shutting down Clinic Scheduling Backend API")


# Create FastAPI application
app = FastAPI(
    title="Clinic Scheduling Backend",
    description="Resource and procedure scheduling engine for clinics",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
CLINIC_PREFIX = "/api/clinics/{clinic_id}"

app.include_router(
    resources_router,
    prefix=CLINIC_PREFIX,
    tags=["resources"],
    responses={
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    procedures_router,
    prefix=CLINIC_PREFIX,
    tags=["procedures"],
    responses={
        404: {"description": "Procedure not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    availability_router,
    prefix=CLINIC_PREFIX,
    tags=["availability"],
    responses={
        404: {"description": "Resource not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    slots_router,
    prefix=CLINIC_PREFIX,
    tags=["slots"],
    responses={
        404: {"description": "Slot not found"},
        409: {"description": "Conflict"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    appointments_router,
    prefix=CLINIC_PREFIX,
    tags=["appointments"],
    responses={
        404: {"description": "Appointment not found"},
        409: {"description": "Conflict"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
        503: {"description": "Storage unavailable"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API information."""
    return {
        "message": "Clinic Scheduling Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


# Domain exception handlers
ERROR_STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 422,
    ConflictError: 409,
    InsufficientInventoryError: 409,
    InactiveResourceError: 409,
    StorageError: 503,
}


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Map scheduling engine errors to HTTP responses."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        400,
    )
    if status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.warning(f"{exc.code}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# Global exception handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle ValueError exceptions."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )

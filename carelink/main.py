"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carelink import __version__
from carelink.api.v1.router import api_router
from carelink.core.config import settings
from carelink.core.exceptions import CarelinkError, UnexpectedError
from carelink.core.logging import setup_logging
from carelink.db.init_db import create_tables
from carelink.services.notifications import notification_bus

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup and shutdown events."""
    logger.info(f"Starting CareLink API (env={settings.env})")

    if settings.init_db_on_startup and settings.is_dev:
        logger.info("Initializing database...")
        await create_tables()

    yield

    # Deliver anything still queued
    report = await notification_bus.flush()
    logger.info(f"Shutting down CareLink API (flushed {report.sent} notifications)")


app = FastAPI(
    title="CareLink API",
    description="Healthcare coordination workflow and access-control service",
    version=__version__,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

if settings.is_dev:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:3001"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(CarelinkError)
async def carelink_exception_handler(request: Request, exc: CarelinkError) -> JSONResponse:
    """Render workflow errors with their stable kind."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind}: {exc.message}", extra={"kind": exc.kind})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    error = UnexpectedError(
        "Internal server error" if settings.is_prod else str(exc)
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error.to_dict(),
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict:
    """Root endpoint."""
    return {
        "service": "CareLink API",
        "version": __version__,
        "docs": "/docs" if settings.is_dev else "Disabled in production",
    }

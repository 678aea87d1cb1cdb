"""ShiftGuard FastAPI Application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shiftguard.config import settings
from shiftguard.database import close_database
from shiftguard.logging_config import get_logger, setup_logging
from shiftguard.middleware import CorrelationIdMiddleware
from shiftguard.routers import driver_assignment, escalation, health, line_webhook
from shiftguard.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Migrations are applied by `alembic upgrade head` before uvicorn starts
    logger.info(
        "ShiftGuard API started",
        notification_provider=settings.notification_provider,
    )

    start_scheduler()

    yield

    logger.info("Shutting down ShiftGuard API...")
    stop_scheduler()
    await close_database()
    logger.info("ShiftGuard API shutdown complete")


app = FastAPI(
    title="ShiftGuard API",
    description="Check-in monitoring and escalation engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware (order matters: first added = last executed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(escalation.router)
app.include_router(driver_assignment.router)
app.include_router(line_webhook.router)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint."""
    return {
        "name": "ShiftGuard API",
        "version": "0.1.0",
        "docs": "/docs",
    }

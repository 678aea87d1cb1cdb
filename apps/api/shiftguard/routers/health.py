"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse

from shiftguard.database import check_database_connection
from shiftguard.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


def _sweep_state() -> str:
    scheduler = get_scheduler()
    if scheduler is None:
        return "stopped"
    return "running" if scheduler.running else "stopped"


@router.get("/health", response_model=None)
async def health_check() -> Response:
    """
    Health check endpoint with database and sweep status.

    Returns 200 with ``"status": "healthy"`` when the database is reachable,
    503 with ``"status": "degraded"`` otherwise.
    """
    db_connected = await check_database_connection()

    return JSONResponse(
        status_code=status.HTTP_200_OK if db_connected else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if db_connected else "degraded",
            "database": "connected" if db_connected else "disconnected",
            "escalation_sweep": _sweep_state(),
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """
    Liveness probe.

    Only reports that the process is up; external dependencies are not
    checked here.
    """
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe() -> Response:
    """Readiness probe: ready once the database answers."""
    db_connected = await check_database_connection()

    if db_connected:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": "connected"},
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "database": "disconnected"},
    )

"""
Health check endpoints for monitoring service status.
"""

from datetime import datetime, timezone
import time

from fastapi import APIRouter, Request
import structlog

from datasource_hub.settings import settings
from datasource_hub.schemas import HealthCheck

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheck)
async def health_check(request: Request) -> HealthCheck:
    """
    Check the health status of the service.

    Returns:
        HealthCheck: Service health information
    """
    uptime = time.time() - request.app.state.started_at

    return HealthCheck(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        uptime_seconds=uptime,
        plugins_loaded=len(request.app.state.registry),
    )


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Ready once the plugin catalog has been initialized.

    Returns:
        dict: Readiness status
    """
    registry = request.app.state.registry
    ready = registry.is_initialized or not request.app.state.load_defaults
    return {
        "status": "ready" if ready else "starting",
        "timestamp": datetime.now(timezone.utc),
    }

"""Health Check Endpoint"""

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response
from typing import Dict, Any

from agent_scheduler.core.config import settings
from agent_scheduler.core.monitoring import get_metrics, get_metrics_content_type

router = APIRouter(tags=["health"])


async def check_database() -> bool:
    """Check database connection health"""
    from agent_scheduler.core.database import check_database_connection
    return await check_database_connection()


def check_scheduler(request: Request) -> bool:
    """
    Check the scheduling engine.

    A deployment with SCHEDULER_ENABLED off is healthy without a running
    engine.
    """
    if not settings.SCHEDULER_ENABLED:
        return True
    engine = getattr(request.app.state, "engine", None)
    return engine is not None and engine.running


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(request: Request) -> JSONResponse:
    """
    Health check endpoint that verifies the database and the scheduler.

    Returns:
        200 OK if all services are healthy
        503 Service Unavailable if any service is unhealthy
    """
    checks = {
        "database": await check_database(),
        "scheduler": check_scheduler(request)
    }

    all_healthy = all(checks.values())

    response_data: Dict[str, Any] = {
        "status": "healthy" if all_healthy else "unhealthy",
        "version": settings.APP_VERSION,
        "services": checks
    }

    engine = getattr(request.app.state, "engine", None)
    if engine is not None:
        response_data["scheduler"] = engine.get_status()

    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response_data
    )


@router.get("/metrics")
async def metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping by Prometheus server.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

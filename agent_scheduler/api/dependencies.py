"""Common API dependencies"""

from fastapi import HTTPException, Request, status

from agent_scheduler.services.agent_adapter import AgentAdapter
from agent_scheduler.services.scheduling_engine import SchedulingEngine


def get_engine(request: Request) -> SchedulingEngine:
    """
    The process-wide scheduling engine created in the application lifespan.

    Raises:
        HTTPException 503: If the application has not finished starting
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduling engine is not initialized"
        )
    return engine


def get_adapter(request: Request) -> AgentAdapter:
    """The agent adapter shared with the engine"""
    return get_engine(request).adapter

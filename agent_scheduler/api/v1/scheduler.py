"""Scheduler control API Endpoints"""

from fastapi import APIRouter, Depends

from agent_scheduler.api.dependencies import get_engine
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.schemas.schedule import SchedulerActionResponse, SchedulerStatusResponse
from agent_scheduler.services.scheduling_engine import SchedulingEngine

logger = get_logger(__name__)

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get(
    "/status",
    response_model=SchedulerStatusResponse
)
async def get_scheduler_status(engine: SchedulingEngine = Depends(get_engine)):
    """Whether the engine is running and which schedules hold a live timer"""
    return SchedulerStatusResponse(**engine.get_status())


@router.post(
    "/reload",
    response_model=SchedulerActionResponse
)
async def reload_scheduler(engine: SchedulingEngine = Depends(get_engine)):
    """Re-register every enabled schedule from the store"""
    registered = await engine.reload_schedules()

    logger.info("scheduler_reloaded_via_api", registered_count=registered)

    return SchedulerActionResponse(
        success=True,
        message=f"Reloaded {registered} schedules",
        status=SchedulerStatusResponse(**engine.get_status())
    )


@router.post(
    "/restart",
    response_model=SchedulerActionResponse
)
async def restart_scheduler(engine: SchedulingEngine = Depends(get_engine)):
    """Stop the engine and start it again"""
    await engine.stop()
    await engine.start()

    logger.info("scheduler_restarted_via_api")

    return SchedulerActionResponse(
        success=True,
        message="Scheduler restarted",
        status=SchedulerStatusResponse(**engine.get_status())
    )

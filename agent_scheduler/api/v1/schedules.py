"""Schedules API Endpoints"""

from dataclasses import asdict
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from agent_scheduler.api.dependencies import get_engine
from agent_scheduler.core.config import settings
from agent_scheduler.core.database import get_db
from agent_scheduler.core.exceptions import ScheduleNotFoundError, ScheduleValidationError
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.schemas.execution import (
    ExecutionListResponse,
    ExecutionResponse,
    ExecutionStatsResponse
)
from agent_scheduler.schemas.schedule import (
    CronValidationRequest,
    CronValidationResponse,
    ScheduleCreateRequest,
    ScheduleDeleteResponse,
    ScheduleListResponse,
    ScheduleResponse,
    ScheduleToggleRequest,
    ScheduleUpdateRequest
)
from agent_scheduler.services.agent_adapter import AgentAdapter, AgentRef
from agent_scheduler.services.cron_expression import (
    ensure_valid_cron_expression,
    get_zone,
    min_fire_interval,
    upcoming_runs
)
from agent_scheduler.services.execution_ledger import ExecutionLedger, ExecutionStats
from agent_scheduler.services.schedule_store import ScheduleInfo, ScheduleStore
from agent_scheduler.services.scheduling_engine import SchedulingEngine

logger = get_logger(__name__)

router = APIRouter(prefix="/schedules", tags=["schedules"])


def to_schedule_response(
    schedule: ScheduleInfo,
    engine: Optional[SchedulingEngine] = None,
    stats: Optional[ExecutionStats] = None
) -> ScheduleResponse:
    return ScheduleResponse(
        **asdict(schedule),
        registered=engine.is_registered(schedule.schedule_id) if engine else None,
        stats=ExecutionStatsResponse(**stats.to_dict()) if stats else None
    )


async def check_agent_can_be_scheduled(
    adapter: AgentAdapter,
    agent_ref: AgentRef,
    cron_expression: str,
    timezone: str
) -> None:
    """
    Reject agents that cannot run on this schedule.

    Raises:
        AgentResolutionError: If the agent cannot be resolved
        ScheduleValidationError: If the agent does not support scheduling or
            the expression fires more often than the agent allows
    """
    runnable = await adapter.resolve_async(agent_ref)

    if not runnable.supports_scheduling:
        raise ScheduleValidationError(
            f"Agent {agent_ref} does not support scheduling",
            field="agent_id",
            invalid_value=agent_ref.agent_id
        )

    floor = runnable.min_interval
    if floor is not None:
        interval = min_fire_interval(cron_expression, timezone)
        if interval < floor:
            raise ScheduleValidationError(
                f"Cron expression fires every {int(interval.total_seconds())}s, "
                f"but agent {agent_ref} allows at most one run every {int(floor.total_seconds())}s",
                field="cron_expression",
                invalid_value=cron_expression
            )


async def get_schedule_or_404(store: ScheduleStore, schedule_id: str) -> ScheduleInfo:
    schedule = await store.get_by_id(schedule_id)
    if schedule is None:
        raise ScheduleNotFoundError(schedule_id)
    return schedule


@router.post(
    "/validate-cron",
    response_model=CronValidationResponse
)
async def validate_cron(request: CronValidationRequest):
    """
    Check a cron expression and preview its next five fire times.

    Invalid input is reported in the body rather than as an error status.
    """
    try:
        next_runs = upcoming_runs(request.cron_expression, request.timezone, count=5)
    except ScheduleValidationError as e:
        return CronValidationResponse(valid=False, error=e.message)

    return CronValidationResponse(valid=True, next_runs=next_runs)


@router.post(
    "",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_schedule(
    request: ScheduleCreateRequest,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new agent schedule.

    **Cron Expression Format:**
    - Minute (0-59)
    - Hour (0-23)
    - Day of month (1-31)
    - Month (1-12)
    - Day of week (0-6, Sunday=0)

    **Examples:**
    - `0 0 * * *` - Daily at midnight
    - `*/5 * * * *` - Every 5 minutes
    - `0 9 * * 1-5` - Weekdays at 9 AM

    The expression is evaluated in `timezone` (IANA name, default UTC).
    The agent must exist, support scheduling, and allow the resulting
    frequency.
    """
    timezone = request.timezone or settings.DEFAULT_TIMEZONE
    ensure_valid_cron_expression(request.cron_expression)
    get_zone(timezone)

    agent_ref = AgentRef(agent_id=request.agent_id, agent_type=request.agent_type.value)
    await check_agent_can_be_scheduled(engine.adapter, agent_ref, request.cron_expression, timezone)

    store = ScheduleStore(db)
    schedule = await store.create(
        agent_id=request.agent_id,
        agent_type=request.agent_type.value,
        name=request.name,
        description=request.description,
        workspace_id=request.workspace_id,
        cron_expression=request.cron_expression,
        timezone=timezone,
        context=request.context,
        enabled=request.enabled,
        created_by=request.created_by
    )

    await engine.update_schedule(schedule.schedule_id)

    logger.info(
        "schedule_created_via_api",
        schedule_id=schedule.schedule_id,
        agent=str(agent_ref),
        workspace_id=schedule.workspace_id,
        cron_expression=schedule.cron_expression
    )

    return to_schedule_response(schedule, engine)


@router.get(
    "",
    response_model=ScheduleListResponse
)
async def list_schedules(
    workspace_id: Optional[str] = None,
    enabled: Optional[bool] = None,
    agent_id: Optional[str] = None,
    agent_type: Optional[str] = None,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """
    List schedules with their execution stats.

    **Query Parameters:**
    - `workspace_id`: Filter by workspace
    - `enabled`: Filter by enabled flag (true/false)
    - `agent_id`, `agent_type`: Filter by agent
    """
    store = ScheduleStore(db)
    ledger = ExecutionLedger(db)

    schedules = await store.list_by_filter(
        workspace_id=workspace_id,
        enabled_only=enabled is True,
        agent_id=agent_id,
        agent_type=agent_type
    )
    if enabled is False:
        schedules = [s for s in schedules if not s.enabled]

    responses = [
        to_schedule_response(s, engine, await ledger.stats(s.schedule_id))
        for s in schedules
    ]

    return ScheduleListResponse(schedules=responses, total=len(responses))


@router.get(
    "/{schedule_id}",
    response_model=ScheduleResponse
)
async def get_schedule(
    schedule_id: str,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """Get a schedule with its execution stats"""
    schedule = await get_schedule_or_404(ScheduleStore(db), schedule_id)
    stats = await ExecutionLedger(db).stats(schedule_id)
    return to_schedule_response(schedule, engine, stats)


@router.patch(
    "/{schedule_id}",
    response_model=ScheduleResponse
)
async def update_schedule(
    schedule_id: str,
    request: ScheduleUpdateRequest,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """
    Update a schedule.

    Changing the cron expression or timezone recomputes the next run.
    Changing timing or re-enabling re-checks that the agent can still be
    scheduled. The engine picks the change up immediately.
    """
    store = ScheduleStore(db)
    existing = await get_schedule_or_404(store, schedule_id)

    fields = request.model_dump(exclude_unset=True)
    # Required columns cannot be cleared
    for key in ("name", "cron_expression", "timezone", "context", "enabled"):
        if key in fields and fields[key] is None:
            del fields[key]

    timing_changed = "cron_expression" in fields or "timezone" in fields
    re_enabled = fields.get("enabled") is True and not existing.enabled
    if timing_changed or re_enabled:
        cron_expression = fields.get("cron_expression", existing.cron_expression)
        timezone = fields.get("timezone", existing.timezone)
        ensure_valid_cron_expression(cron_expression)
        get_zone(timezone)
        await check_agent_can_be_scheduled(engine.adapter, existing.agent_ref, cron_expression, timezone)

    schedule = await store.update(schedule_id, **fields) if fields else existing

    await engine.update_schedule(schedule_id)

    logger.info("schedule_updated_via_api", schedule_id=schedule_id, fields=sorted(fields))

    return to_schedule_response(schedule, engine)


@router.delete(
    "/{schedule_id}",
    response_model=ScheduleDeleteResponse
)
async def delete_schedule(
    schedule_id: str,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """Delete a schedule and its execution history"""
    engine.unregister_schedule(schedule_id)
    await ScheduleStore(db).delete(schedule_id)

    logger.info("schedule_deleted_via_api", schedule_id=schedule_id)

    return ScheduleDeleteResponse(
        success=True,
        message=f"Schedule {schedule_id} deleted successfully"
    )


@router.post(
    "/{schedule_id}/toggle",
    response_model=ScheduleResponse
)
async def toggle_schedule(
    schedule_id: str,
    request: Optional[ScheduleToggleRequest] = None,
    engine: SchedulingEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db)
):
    """Enable or disable a schedule; flips the flag when no body is sent"""
    store = ScheduleStore(db)
    existing = await get_schedule_or_404(store, schedule_id)

    enabled = request.enabled if request and request.enabled is not None else not existing.enabled
    if enabled and not existing.enabled:
        # The agent may have been removed or deactivated while the schedule was off
        await check_agent_can_be_scheduled(
            engine.adapter, existing.agent_ref, existing.cron_expression, existing.timezone
        )

    schedule = await store.set_enabled(schedule_id, enabled)

    await engine.update_schedule(schedule_id)

    logger.info("schedule_toggled_via_api", schedule_id=schedule_id, enabled=enabled)

    return to_schedule_response(schedule, engine)


@router.post(
    "/{schedule_id}/run",
    response_model=ExecutionResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def run_schedule_now(
    schedule_id: str,
    engine: SchedulingEngine = Depends(get_engine)
):
    """
    Run a schedule immediately.

    Returns the running execution; the run continues in the background.
    Responds 409 when the schedule already has a run in flight.
    """
    execution = await engine.run_now(schedule_id)
    return ExecutionResponse.model_validate(execution)


@router.get(
    "/{schedule_id}/executions",
    response_model=ExecutionListResponse
)
async def list_schedule_executions(
    schedule_id: str,
    limit: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Execution history for a schedule, newest first"""
    await get_schedule_or_404(ScheduleStore(db), schedule_id)

    executions = await ExecutionLedger(db).history(schedule_id, limit=limit)

    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(e) for e in executions],
        total=len(executions)
    )


@router.get(
    "/{schedule_id}/stats",
    response_model=ExecutionStatsResponse
)
async def get_schedule_stats(
    schedule_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Outcome counts, success rate and average duration for a schedule"""
    await get_schedule_or_404(ScheduleStore(db), schedule_id)

    stats = await ExecutionLedger(db).stats(schedule_id)
    return ExecutionStatsResponse(**stats.to_dict())

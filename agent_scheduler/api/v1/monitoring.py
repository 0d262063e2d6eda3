"""Monitoring API Endpoints - recent failures and active alerts"""

from datetime import timedelta
from typing import Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agent_scheduler.api.v1.health import check_scheduler
from agent_scheduler.core.database import get_db
from agent_scheduler.models.base import utcnow
from agent_scheduler.schemas.monitoring import (
    AlertListResponse,
    AlertResponse,
    FailedExecutionResponse,
    FailedExecutionsResponse,
    FailedScheduleGroup,
    FailureSummary
)
from agent_scheduler.services.execution_ledger import ExecutionLedger
from agent_scheduler.services.schedule_alerts import collect_alerts, group_failures

router = APIRouter(prefix="/monitoring", tags=["monitoring"])


@router.get(
    "/executions/failed",
    response_model=FailedExecutionsResponse
)
async def list_failed_executions(
    hours: int = Query(24, ge=1, le=24 * 90),
    limit: int = Query(20, ge=1, le=500),
    workspace_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Failed executions from the last `hours`, grouped by schedule"""
    since = utcnow() - timedelta(hours=hours)
    failures = await ExecutionLedger(db).failed_since(
        hours=hours, limit=limit, workspace_id=workspace_id
    )
    groups = group_failures(failures)

    return FailedExecutionsResponse(
        hours=hours,
        since=since,
        summary=FailureSummary(
            total_failures=len(failures),
            affected_schedules=len(groups)
        ),
        schedules=[
            FailedScheduleGroup(
                schedule_id=group["schedule_id"],
                schedule_name=group["schedule_name"],
                failures=[FailedExecutionResponse.model_validate(e) for e in group["failures"]]
            )
            for group in groups
        ]
    )


@router.get(
    "/alerts",
    response_model=AlertListResponse
)
async def list_alerts(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Active alerts, critical first.

    Enabled schedules are graded by failure count and success rate, long
    running executions are flagged, and a scheduling engine that should be
    running but is not raises a critical alert.
    """
    alerts = await collect_alerts(db, engine_running=check_scheduler(request))

    return AlertListResponse(
        timestamp=utcnow(),
        alert_count=len(alerts),
        alerts=[AlertResponse(**alert.to_dict()) for alert in alerts]
    )

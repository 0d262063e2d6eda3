"""Execution history API Endpoints"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agent_scheduler.core.database import get_db
from agent_scheduler.schemas.execution import ExecutionListResponse, ExecutionResponse
from agent_scheduler.schemas.schedule import WorkspaceScheduleStatsResponse
from agent_scheduler.services.execution_ledger import ExecutionLedger
from agent_scheduler.services.schedule_store import ScheduleStore

router = APIRouter(tags=["executions"])


@router.get(
    "/executions/recent",
    response_model=ExecutionListResponse
)
async def list_recent_executions(
    limit: int = Query(10, ge=1, le=200),
    workspace_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Latest executions across all schedules, optionally within one workspace"""
    executions = await ExecutionLedger(db).recent(limit=limit, workspace_id=workspace_id)

    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(e) for e in executions],
        total=len(executions)
    )


@router.get(
    "/workspaces/{workspace_id}/schedule-stats",
    response_model=WorkspaceScheduleStatsResponse
)
async def get_workspace_schedule_stats(
    workspace_id: str,
    db: AsyncSession = Depends(get_db)
):
    """Schedule and execution counts for a workspace, with its latest runs"""
    stats = await ScheduleStore(db).workspace_stats(workspace_id)

    return WorkspaceScheduleStatsResponse(
        workspace_id=workspace_id,
        total_schedules=stats["total_schedules"],
        active_schedules=stats["active_schedules"],
        total_executions=stats["total_executions"],
        recent_executions=[
            ExecutionResponse.model_validate(e) for e in stats["recent_executions"]
        ]
    )

"""Pydantic schemas for API request/response validation"""

from agent_scheduler.schemas.execution import (
    ExecutionResponse,
    ExecutionListResponse,
    ExecutionStatsResponse
)
from agent_scheduler.schemas.monitoring import (
    FailedExecutionResponse,
    FailedScheduleGroup,
    FailureSummary,
    FailedExecutionsResponse,
    AlertResponse,
    AlertListResponse
)
from agent_scheduler.schemas.schedule import (
    ScheduleCreateRequest,
    ScheduleUpdateRequest,
    ScheduleToggleRequest,
    ScheduleResponse,
    ScheduleListResponse,
    ScheduleDeleteResponse,
    CronValidationRequest,
    CronValidationResponse,
    SchedulerStatusResponse,
    SchedulerActionResponse,
    WorkspaceScheduleStatsResponse
)

__all__ = [
    "ExecutionResponse",
    "ExecutionListResponse",
    "ExecutionStatsResponse",
    "FailedExecutionResponse",
    "FailedScheduleGroup",
    "FailureSummary",
    "FailedExecutionsResponse",
    "AlertResponse",
    "AlertListResponse",
    "ScheduleCreateRequest",
    "ScheduleUpdateRequest",
    "ScheduleToggleRequest",
    "ScheduleResponse",
    "ScheduleListResponse",
    "ScheduleDeleteResponse",
    "CronValidationRequest",
    "CronValidationResponse",
    "SchedulerStatusResponse",
    "SchedulerActionResponse",
    "WorkspaceScheduleStatsResponse",
]

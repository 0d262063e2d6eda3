"""Schedule Schemas"""

from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from agent_scheduler.models.agent_schedule import AgentType
from agent_scheduler.schemas.execution import ExecutionResponse, ExecutionStatsResponse


class ScheduleCreateRequest(BaseModel):
    """Request schema for creating an agent schedule"""
    agent_id: str = Field(..., min_length=1, max_length=255, description="ID of the agent to run")
    agent_type: AgentType = Field(AgentType.IMPORTED, description="Kind of agent: imported, system or flow")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    description: Optional[str] = Field(None, description="Optional description")
    workspace_id: Optional[str] = Field(None, max_length=64, description="Workspace the schedule belongs to")
    cron_expression: str = Field(
        ...,
        description="5-field cron expression (e.g., '0 0 * * *' for daily at midnight)",
        examples=["0 9 * * 1-5"]
    )
    timezone: Optional[str] = Field(None, description="IANA timezone the expression is evaluated in")
    context: Dict[str, Any] = Field(default_factory=dict, description="Payload passed to the agent on every run")
    enabled: bool = Field(True, description="Whether the schedule fires")
    created_by: Optional[str] = Field(None, description="ID of the creator")

    @field_validator('cron_expression')
    @classmethod
    def strip_cron_expression(cls, v: str) -> str:
        return " ".join(v.split())


class ScheduleUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    workspace_id: Optional[str] = Field(None, max_length=64)
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None

    @field_validator('cron_expression')
    @classmethod
    def strip_cron_expression(cls, v: Optional[str]) -> Optional[str]:
        return " ".join(v.split()) if v is not None else v


class ScheduleToggleRequest(BaseModel):
    """Set the enabled flag explicitly, or flip it when omitted"""
    enabled: Optional[bool] = None


class ScheduleResponse(BaseModel):
    """Response schema for schedule information"""
    model_config = ConfigDict(from_attributes=True)

    schedule_id: str = Field(..., description="Unique identifier for the schedule")
    agent_id: str
    agent_type: str
    name: str
    description: Optional[str] = None
    workspace_id: Optional[str] = None
    cron_expression: str
    timezone: str
    context: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool
    created_by: Optional[str] = None
    last_run_at: Optional[datetime] = Field(None, description="Last successful run (UTC)")
    next_run_at: Optional[datetime] = Field(None, description="Next scheduled run (UTC)")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    registered: Optional[bool] = Field(None, description="Whether the engine holds a live timer for it")
    stats: Optional[ExecutionStatsResponse] = None


class ScheduleListResponse(BaseModel):
    """Response schema for list of schedules"""
    schedules: List[ScheduleResponse] = Field(..., description="List of schedules")
    total: int = Field(..., description="Total number of schedules")


class ScheduleDeleteResponse(BaseModel):
    """Response schema for schedule deletion"""
    success: bool = Field(..., description="Whether the deletion was successful")
    message: str = Field(..., description="Deletion result message")


class CronValidationRequest(BaseModel):
    cron_expression: str
    timezone: str = "UTC"


class CronValidationResponse(BaseModel):
    """Validity of a cron expression and its next five fire times"""
    valid: bool
    next_runs: List[datetime] = Field(default_factory=list, description="Upcoming fire times (UTC)")
    error: Optional[str] = None


class SchedulerStatusResponse(BaseModel):
    running: bool
    registered_count: int
    schedule_ids: List[str]
    in_flight_count: int


class SchedulerActionResponse(BaseModel):
    success: bool
    message: str
    status: SchedulerStatusResponse


class WorkspaceScheduleStatsResponse(BaseModel):
    workspace_id: str
    total_schedules: int
    active_schedules: int
    total_executions: int
    recent_executions: List[ExecutionResponse]

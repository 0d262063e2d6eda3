"""Monitoring Schemas"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class FailedExecutionResponse(BaseModel):
    """One failure inside a schedule group"""
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    started_at: datetime
    error: Optional[str] = None
    duration_seconds: Optional[float] = None


class FailedScheduleGroup(BaseModel):
    schedule_id: str
    schedule_name: Optional[str] = None
    failures: List[FailedExecutionResponse]


class FailureSummary(BaseModel):
    total_failures: int
    affected_schedules: int


class FailedExecutionsResponse(BaseModel):
    """Recent failures grouped by schedule"""
    hours: int
    since: datetime
    summary: FailureSummary
    schedules: List[FailedScheduleGroup]


class AlertResponse(BaseModel):
    level: str = Field(..., description="critical, warning or info")
    type: str
    message: str
    schedule_id: Optional[str] = None
    schedule_name: Optional[str] = None
    execution_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class AlertListResponse(BaseModel):
    timestamp: datetime
    alert_count: int
    alerts: List[AlertResponse]

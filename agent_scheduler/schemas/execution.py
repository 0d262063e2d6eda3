"""Execution Schemas"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ExecutionResponse(BaseModel):
    """A single scheduled execution"""
    model_config = ConfigDict(from_attributes=True)

    execution_id: str
    schedule_id: str
    schedule_name: Optional[str] = None
    status: str = Field(..., description="running, success or failed")
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    output: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0


class ExecutionListResponse(BaseModel):
    executions: List[ExecutionResponse]
    total: int


class ExecutionStatsResponse(BaseModel):
    """Outcome counts for one schedule"""
    model_config = ConfigDict(from_attributes=True)

    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = Field(100.0, description="Percentage of successful runs, 100 when never run")
    avg_duration_seconds: float = 0.0

"""SQLAlchemy models for the Agent Scheduler"""

from agent_scheduler.models.base import Base
from agent_scheduler.models.agent_schedule import AgentScheduleModel, AgentType
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel, ExecutionStatus

__all__ = [
    "Base",
    "AgentScheduleModel",
    "AgentType",
    "ScheduleExecutionModel",
    "ExecutionStatus",
]

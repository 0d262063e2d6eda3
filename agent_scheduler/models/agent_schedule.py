"""Agent Schedule Model"""

import enum
from sqlalchemy import Column, String, Text, Boolean, JSON, TIMESTAMP, Index
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship

from agent_scheduler.models.base import BaseModel


class AgentType(str, enum.Enum):
    """Kinds of agents that can be scheduled"""
    IMPORTED = "imported"
    SYSTEM = "system"
    FLOW = "flow"


class AgentScheduleModel(BaseModel):
    """
    Agent Schedules table for recurring, unattended agent runs.

    Stores the agent reference, the cron expression and the IANA timezone it
    is evaluated in, and the context payload handed to the agent on every
    fire. last_run_at/next_run_at are naive UTC and are written by the
    scheduling engine.
    """
    __tablename__ = "agent_schedules"

    agent_id = Column(String(255), nullable=False)
    agent_type = Column(String(50), nullable=False, default=AgentType.IMPORTED.value)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    workspace_id = Column(String(64), nullable=True, index=True)
    cron_expression = Column(String(255), nullable=False)
    timezone = Column(String(64), nullable=False, default="UTC", server_default="UTC")
    context = Column(JSON, nullable=False, default=dict)
    enabled = Column(Boolean, nullable=False, default=True, server_default="1")
    last_run_at = Column(TIMESTAMP, nullable=True)
    next_run_at = Column(TIMESTAMP, nullable=True)
    created_by = Column(CHAR(36), nullable=True)

    # Relationships
    executions = relationship(
        "ScheduleExecutionModel",
        back_populates="schedule",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise"
    )

    __table_args__ = (
        Index("idx_schedule_enabled_next_run", "enabled", "next_run_at"),
        Index("idx_schedule_agent", "agent_type", "agent_id"),
    )

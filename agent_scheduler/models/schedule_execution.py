"""Schedule Execution Model"""

import enum
from sqlalchemy import Column, Integer, Text, Enum, TIMESTAMP, ForeignKey, Index
from sqlalchemy.dialects.mysql import CHAR
from sqlalchemy.orm import relationship

from agent_scheduler.models.base import Base


class ExecutionStatus(str, enum.Enum):
    """Execution status enumeration"""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class ScheduleExecutionModel(Base):
    """
    Schedule Executions table, one row per fire attempt.

    A row is inserted as running and transitions exactly once to success or
    failed. Rows are purged by the retention sweep.
    """
    __tablename__ = "schedule_executions"

    id = Column(CHAR(36), primary_key=True)
    schedule_id = Column(
        CHAR(36),
        ForeignKey("agent_schedules.id", ondelete="CASCADE"),
        nullable=False
    )
    status = Column(
        Enum(
            ExecutionStatus,
            name="executionstatus",
            values_callable=lambda statuses: [s.value for s in statuses]
        ),
        nullable=False,
        default=ExecutionStatus.RUNNING,
        server_default="running"
    )
    started_at = Column(TIMESTAMP, nullable=False)
    completed_at = Column(TIMESTAMP, nullable=True)
    output = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    tokens_used = Column(Integer, nullable=False, default=0, server_default="0")

    # Relationships
    schedule = relationship("AgentScheduleModel", back_populates="executions", lazy="raise")

    __table_args__ = (
        Index("idx_execution_schedule_started", "schedule_id", "started_at"),
        Index("idx_execution_status", "status"),
    )

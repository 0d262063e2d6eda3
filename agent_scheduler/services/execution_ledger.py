"""
Execution Ledger - append-only record of scheduled agent runs.

This service is responsible for:
- Opening a running execution, at most one per schedule
- Moving a running execution to success or failed exactly once
- Execution history and per-schedule statistics
- Purging records older than the retention window
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

from sqlalchemy import select, delete, update, insert, exists, literal, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import String, TIMESTAMP, Integer

from agent_scheduler.core.exceptions import ExecutionAlreadyRunningError
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.agent_schedule import AgentScheduleModel
from agent_scheduler.models.base import utcnow, new_id
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel, ExecutionStatus

logger = get_logger(__name__)


# ============================================================================
# Data Models
# ============================================================================


@dataclass
class ExecutionInfo:
    """A single execution record"""
    execution_id: str
    schedule_id: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    output: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0
    schedule_name: Optional[str] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    @classmethod
    def from_model(
        cls,
        model: ScheduleExecutionModel,
        schedule_name: Optional[str] = None
    ) -> "ExecutionInfo":
        status = model.status
        return cls(
            execution_id=model.id,
            schedule_id=model.schedule_id,
            status=status.value if isinstance(status, ExecutionStatus) else status,
            started_at=model.started_at,
            completed_at=model.completed_at,
            output=model.output,
            error=model.error,
            tokens_used=model.tokens_used or 0,
            schedule_name=schedule_name
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "schedule_id": self.schedule_id,
            "schedule_name": self.schedule_name,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "output": self.output,
            "error": self.error,
            "tokens_used": self.tokens_used
        }


@dataclass
class ExecutionStats:
    """Aggregate outcome counts for one schedule"""
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: float = 100.0
    avg_duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "avg_duration_seconds": self.avg_duration_seconds
        }


def serialize_output(output: Any) -> Optional[str]:
    """Store strings verbatim, everything else as JSON"""
    if output is None or isinstance(output, str):
        return output
    try:
        return json.dumps(output, default=str)
    except (TypeError, ValueError):
        return str(output)


def compute_stats(rows: List[ExecutionInfo]) -> ExecutionStats:
    """
    Aggregate execution rows.

    success_rate is a percentage of all rows and is 100.0 for a schedule that
    never ran. avg_duration_seconds only counts rows that have completed.
    """
    total = len(rows)
    successful = sum(1 for r in rows if r.status == ExecutionStatus.SUCCESS.value)
    failed = sum(1 for r in rows if r.status == ExecutionStatus.FAILED.value)
    durations = [r.duration_seconds for r in rows if r.duration_seconds is not None]

    return ExecutionStats(
        total=total,
        successful=successful,
        failed=failed,
        success_rate=(successful / total * 100) if total else 100.0,
        avg_duration_seconds=(sum(durations) / len(durations)) if durations else 0.0
    )


# ============================================================================
# Ledger
# ============================================================================


class ExecutionLedger:
    """Reads and writes schedule_executions rows"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _get_running(self, execution_id: str) -> Optional[ScheduleExecutionModel]:
        stmt = select(ScheduleExecutionModel).where(
            and_(
                ScheduleExecutionModel.id == str(execution_id),
                ScheduleExecutionModel.status == ExecutionStatus.RUNNING
            )
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def start(self, schedule_id: str) -> ExecutionInfo:
        """
        Open a running execution for a schedule.

        The row is inserted with a single INSERT ... SELECT guarded by
        NOT EXISTS, so two callers racing on the same schedule cannot both
        succeed.

        Raises:
            ExecutionAlreadyRunningError: If the schedule already has a running execution
        """
        execution_id = new_id()
        started_at = utcnow()

        already_running = exists().where(
            and_(
                ScheduleExecutionModel.schedule_id == str(schedule_id),
                ScheduleExecutionModel.status == ExecutionStatus.RUNNING
            )
        )
        source = select(
            literal(execution_id, String),
            literal(str(schedule_id), String),
            literal(ExecutionStatus.RUNNING.value, String),
            literal(started_at, TIMESTAMP),
            literal(0, Integer)
        ).where(~already_running)

        stmt = insert(ScheduleExecutionModel).from_select(
            ["id", "schedule_id", "status", "started_at", "tokens_used"],
            source
        )

        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount == 0:
            running = await self.db.scalar(
                select(ScheduleExecutionModel.id).where(
                    and_(
                        ScheduleExecutionModel.schedule_id == str(schedule_id),
                        ScheduleExecutionModel.status == ExecutionStatus.RUNNING
                    )
                ).limit(1)
            )
            raise ExecutionAlreadyRunningError(str(schedule_id), execution_id=running)

        logger.debug(
            "execution_started",
            execution_id=execution_id,
            schedule_id=str(schedule_id)
        )

        return ExecutionInfo(
            execution_id=execution_id,
            schedule_id=str(schedule_id),
            status=ExecutionStatus.RUNNING.value,
            started_at=started_at
        )

    async def complete(
        self,
        execution_id: str,
        output: Any = None,
        tokens_used: int = 0
    ) -> Optional[ExecutionInfo]:
        """
        Mark a running execution successful.

        Returns:
            The updated execution, or None if it is unknown or already terminal
        """
        execution = await self._get_running(execution_id)
        if not execution:
            logger.warning("complete_execution_not_running", execution_id=str(execution_id))
            return None

        execution.status = ExecutionStatus.SUCCESS
        execution.completed_at = utcnow()
        execution.output = serialize_output(output)
        execution.tokens_used = int(tokens_used or 0)

        await self.db.commit()
        await self.db.refresh(execution)

        return ExecutionInfo.from_model(execution)

    async def fail(self, execution_id: str, error: Any) -> Optional[ExecutionInfo]:
        """
        Mark a running execution failed.

        Returns:
            The updated execution, or None if it is unknown or already terminal
        """
        execution = await self._get_running(execution_id)
        if not execution:
            logger.warning("fail_execution_not_running", execution_id=str(execution_id))
            return None

        execution.status = ExecutionStatus.FAILED
        execution.completed_at = utcnow()
        execution.error = str(error)

        await self.db.commit()
        await self.db.refresh(execution)

        return ExecutionInfo.from_model(execution)

    async def history(self, schedule_id: str, limit: int = 20) -> List[ExecutionInfo]:
        """Executions for a schedule, newest first"""
        stmt = (
            select(ScheduleExecutionModel)
            .where(ScheduleExecutionModel.schedule_id == str(schedule_id))
            .order_by(ScheduleExecutionModel.started_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [ExecutionInfo.from_model(e) for e in result.scalars().all()]

    async def stats(self, schedule_id: str) -> ExecutionStats:
        """Outcome counts, success rate and average duration for a schedule"""
        stmt = select(ScheduleExecutionModel).where(
            ScheduleExecutionModel.schedule_id == str(schedule_id)
        )
        result = await self.db.execute(stmt)
        return compute_stats([ExecutionInfo.from_model(e) for e in result.scalars().all()])

    async def recent(
        self,
        limit: int = 10,
        workspace_id: Optional[str] = None
    ) -> List[ExecutionInfo]:
        """Latest executions across schedules, optionally within one workspace"""
        stmt = (
            select(ScheduleExecutionModel, AgentScheduleModel.name)
            .join(AgentScheduleModel, ScheduleExecutionModel.schedule_id == AgentScheduleModel.id)
        )

        if workspace_id is not None:
            stmt = stmt.where(AgentScheduleModel.workspace_id == workspace_id)

        stmt = stmt.order_by(ScheduleExecutionModel.started_at.desc()).limit(limit)

        result = await self.db.execute(stmt)
        return [
            ExecutionInfo.from_model(execution, schedule_name=name)
            for execution, name in result.all()
        ]

    async def failed_since(
        self,
        hours: int = 24,
        limit: int = 20,
        workspace_id: Optional[str] = None
    ) -> List[ExecutionInfo]:
        """
        Failed executions that started within the last `hours`, newest first.

        Args:
            hours: Size of the look-back window
            limit: Maximum number of executions returned
            workspace_id: Restrict to schedules of one workspace
        """
        since = utcnow() - timedelta(hours=hours)
        stmt = (
            select(ScheduleExecutionModel, AgentScheduleModel.name)
            .join(AgentScheduleModel, ScheduleExecutionModel.schedule_id == AgentScheduleModel.id)
            .where(
                and_(
                    ScheduleExecutionModel.status == ExecutionStatus.FAILED,
                    ScheduleExecutionModel.started_at >= since
                )
            )
        )

        if workspace_id is not None:
            stmt = stmt.where(AgentScheduleModel.workspace_id == workspace_id)

        stmt = stmt.order_by(ScheduleExecutionModel.started_at.desc()).limit(limit)

        result = await self.db.execute(stmt)
        return [
            ExecutionInfo.from_model(execution, schedule_name=name)
            for execution, name in result.all()
        ]

    async def running(self) -> List[ExecutionInfo]:
        """Executions that have not reached a terminal state"""
        stmt = (
            select(ScheduleExecutionModel)
            .where(ScheduleExecutionModel.status == ExecutionStatus.RUNNING)
            .order_by(ScheduleExecutionModel.started_at.asc())
        )
        result = await self.db.execute(stmt)
        return [ExecutionInfo.from_model(e) for e in result.scalars().all()]

    async def fail_orphaned(self, reason: str = "Scheduler restarted during execution") -> int:
        """
        Fail every execution still marked running.

        Only valid when no run can be in progress, i.e. before the engine
        starts firing.

        Returns:
            Number of executions failed
        """
        stmt = (
            update(ScheduleExecutionModel)
            .where(ScheduleExecutionModel.status == ExecutionStatus.RUNNING)
            .values(
                status=ExecutionStatus.FAILED,
                completed_at=utcnow(),
                error=reason
            )
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        if result.rowcount:
            logger.warning("orphaned_executions_failed", count=result.rowcount, reason=reason)

        return result.rowcount

    async def cleanup(self, retention_days: int = 30) -> int:
        """
        Delete executions started before the retention window.

        Returns:
            Number of executions deleted
        """
        cutoff = utcnow() - timedelta(days=retention_days)

        stmt = delete(ScheduleExecutionModel).where(
            ScheduleExecutionModel.started_at < cutoff
        )
        result = await self.db.execute(stmt)
        await self.db.commit()

        logger.info(
            "executions_cleaned_up",
            retention_days=retention_days,
            cutoff=cutoff.isoformat(),
            deleted=result.rowcount
        )

        return result.rowcount

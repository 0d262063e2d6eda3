"""Schedule Store - persistence of recurring agent schedules"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, Optional, List

from sqlalchemy import select, delete, func, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from agent_scheduler.core.config import settings
from agent_scheduler.core.exceptions import ScheduleNotFoundError, ScheduleValidationError
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.agent_schedule import AgentScheduleModel
from agent_scheduler.models.base import utcnow, new_id
from agent_scheduler.models.schedule_execution import ScheduleExecutionModel
from agent_scheduler.services.agent_adapter import AgentRef
from agent_scheduler.services.cron_expression import (
    calculate_next_run,
    ensure_valid_cron_expression,
    get_zone,
)

logger = get_logger(__name__)

UPDATABLE_FIELDS = {
    "agent_id",
    "agent_type",
    "name",
    "description",
    "workspace_id",
    "cron_expression",
    "timezone",
    "context",
    "enabled",
    "last_run_at",
    "next_run_at",
}


@dataclass
class ScheduleInfo:
    """Snapshot of a schedule row, detached from any session"""
    schedule_id: str
    agent_id: str
    agent_type: str
    name: str
    cron_expression: str
    timezone: str = "UTC"
    context: Dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    description: Optional[str] = None
    workspace_id: Optional[str] = None
    created_by: Optional[str] = None
    last_run_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def agent_ref(self) -> AgentRef:
        return AgentRef(agent_id=self.agent_id, agent_type=self.agent_type)

    @classmethod
    def from_model(cls, model: AgentScheduleModel) -> "ScheduleInfo":
        return cls(
            schedule_id=model.id,
            agent_id=model.agent_id,
            agent_type=model.agent_type,
            name=model.name,
            description=model.description,
            workspace_id=model.workspace_id,
            cron_expression=model.cron_expression,
            timezone=model.timezone,
            context=dict(model.context or {}),
            enabled=model.enabled,
            created_by=model.created_by,
            last_run_at=model.last_run_at,
            next_run_at=model.next_run_at,
            created_at=model.created_at,
            updated_at=model.updated_at
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_id": self.schedule_id,
            "agent_id": self.agent_id,
            "agent_type": self.agent_type,
            "name": self.name,
            "description": self.description,
            "workspace_id": self.workspace_id,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "context": self.context,
            "enabled": self.enabled,
            "created_by": self.created_by,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


def normalize_context(context: Any) -> Dict[str, Any]:
    """
    Accept the context payload as a mapping or as serialized JSON.

    Raises:
        ScheduleValidationError: If the payload is not a JSON object
    """
    if context is None or context == "":
        return {}
    if isinstance(context, str):
        try:
            context = json.loads(context)
        except ValueError as e:
            raise ScheduleValidationError(
                f"Invalid context payload: {e}",
                field="context",
                invalid_value=context
            ) from e
    if not isinstance(context, dict):
        raise ScheduleValidationError(
            "Context payload must be a JSON object",
            field="context",
            invalid_value=context
        )
    return context


class ScheduleStore:
    """
    Data access for agent schedules.

    Responsibilities:
    - Validate cron expressions and timezones before anything is persisted
    - Create, read, list, update and delete schedules
    - Compute next_run_at in the schedule's timezone
    - Answer the engine's "enabled" and "due" queries
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def _get_model(self, schedule_id: str) -> Optional[AgentScheduleModel]:
        stmt = select(AgentScheduleModel).where(AgentScheduleModel.id == str(schedule_id))
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        agent_id: str,
        agent_type: str,
        name: str,
        cron_expression: str,
        timezone: Optional[str] = None,
        context: Any = None,
        enabled: bool = True,
        workspace_id: Optional[str] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None
    ) -> ScheduleInfo:
        """
        Create a new schedule.

        Args:
            agent_id: ID of the agent to run
            agent_type: Kind of agent (imported, system, flow)
            name: Display name
            cron_expression: 5-field cron expression
            timezone: IANA timezone (defaults to DEFAULT_TIMEZONE)
            context: Payload passed verbatim to the agent (mapping or JSON)
            enabled: Whether the schedule should be registered
            workspace_id: Optional grouping key
            description: Optional description
            created_by: Optional creator ID

        Returns:
            ScheduleInfo with schedule details

        Raises:
            ScheduleValidationError: If the cron expression, timezone or context is invalid
        """
        timezone = timezone or settings.DEFAULT_TIMEZONE
        ensure_valid_cron_expression(cron_expression)
        get_zone(timezone)
        context = normalize_context(context)

        now = utcnow()
        next_run_at = calculate_next_run(cron_expression, timezone, now)

        schedule = AgentScheduleModel(
            id=new_id(),
            agent_id=agent_id,
            agent_type=agent_type,
            name=name,
            description=description,
            workspace_id=workspace_id,
            cron_expression=cron_expression,
            timezone=timezone,
            context=context,
            enabled=enabled,
            next_run_at=next_run_at,
            created_by=created_by,
            created_at=now,
            updated_at=now
        )

        self.db.add(schedule)
        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_created",
            schedule_id=schedule.id,
            agent_id=agent_id,
            agent_type=agent_type,
            cron_expression=cron_expression,
            timezone=timezone,
            next_run_at=next_run_at.isoformat()
        )

        return ScheduleInfo.from_model(schedule)

    async def get_by_id(self, schedule_id: str) -> Optional[ScheduleInfo]:
        """
        Get a schedule by ID.

        Returns:
            ScheduleInfo if found, None otherwise
        """
        schedule = await self._get_model(schedule_id)
        if not schedule:
            return None
        return ScheduleInfo.from_model(schedule)

    async def list_by_filter(
        self,
        workspace_id: Optional[str] = None,
        enabled_only: bool = False,
        agent_id: Optional[str] = None,
        agent_type: Optional[str] = None
    ) -> List[ScheduleInfo]:
        """
        List schedules with optional filters, soonest next run first.

        Args:
            workspace_id: Filter by workspace (optional)
            enabled_only: Only return enabled schedules
            agent_id: Filter by agent ID (optional)
            agent_type: Filter by agent kind (optional)
        """
        conditions = []

        if workspace_id is not None:
            conditions.append(AgentScheduleModel.workspace_id == workspace_id)

        if enabled_only:
            conditions.append(AgentScheduleModel.enabled == True)  # noqa: E712

        if agent_id is not None:
            conditions.append(AgentScheduleModel.agent_id == agent_id)

        if agent_type is not None:
            conditions.append(AgentScheduleModel.agent_type == agent_type)

        stmt = select(AgentScheduleModel)

        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(
            AgentScheduleModel.next_run_at.asc(),
            AgentScheduleModel.created_at.asc()
        )

        result = await self.db.execute(stmt)
        return [ScheduleInfo.from_model(s) for s in result.scalars().all()]

    async def list_enabled(self) -> List[ScheduleInfo]:
        """All enabled schedules (the engine's registration set)"""
        return await self.list_by_filter(enabled_only=True)

    async def list_due(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[ScheduleInfo]:
        """
        Get enabled schedules whose next run is due or was never computed.

        Args:
            now: Reference time (naive UTC, defaults to now)
            limit: Maximum number of schedules to return
        """
        now = now or utcnow()

        stmt = select(AgentScheduleModel).where(
            and_(
                AgentScheduleModel.enabled == True,  # noqa: E712
                or_(
                    AgentScheduleModel.next_run_at <= now,
                    AgentScheduleModel.next_run_at.is_(None)
                )
            )
        ).order_by(AgentScheduleModel.next_run_at.asc())

        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return [ScheduleInfo.from_model(s) for s in result.scalars().all()]

    async def update(self, schedule_id: str, **fields: Any) -> ScheduleInfo:
        """
        Apply a partial update.

        Changing cron_expression or timezone recomputes next_run_at against
        the new expression in the new timezone, starting from now. Turning a
        disabled schedule back on recomputes it as well, so a schedule that
        sat disabled is not treated as overdue.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
            ScheduleValidationError: If a field is unknown or a value is invalid
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ScheduleValidationError(
                f"Unknown schedule fields: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
                schedule_id=str(schedule_id)
            )

        schedule = await self._get_model(schedule_id)
        if not schedule:
            raise ScheduleNotFoundError(str(schedule_id))

        cron_expression = fields.get("cron_expression", schedule.cron_expression)
        timezone = fields.get("timezone", schedule.timezone)

        if "cron_expression" in fields:
            ensure_valid_cron_expression(cron_expression)
        if "timezone" in fields:
            get_zone(timezone)
        if "context" in fields:
            fields["context"] = normalize_context(fields["context"])

        timing_changed = (
            cron_expression != schedule.cron_expression
            or timezone != schedule.timezone
        )
        re_enabled = fields.get("enabled") is True and not schedule.enabled

        for key, value in fields.items():
            setattr(schedule, key, value)

        now = utcnow()
        if (timing_changed or re_enabled) and "next_run_at" not in fields:
            schedule.next_run_at = calculate_next_run(cron_expression, timezone, now)
        schedule.updated_at = now

        await self.db.commit()
        await self.db.refresh(schedule)

        logger.info(
            "schedule_updated",
            schedule_id=schedule.id,
            fields=sorted(fields),
            enabled=schedule.enabled,
            next_run_at=schedule.next_run_at.isoformat() if schedule.next_run_at else None
        )

        return ScheduleInfo.from_model(schedule)

    async def set_enabled(self, schedule_id: str, enabled: bool) -> ScheduleInfo:
        """Enable or disable a schedule"""
        return await self.update(schedule_id, enabled=enabled)

    async def update_last_run(
        self,
        schedule_id: str,
        ran_at: Optional[datetime] = None
    ) -> Optional[ScheduleInfo]:
        """
        Record a completed run and compute the next fire time.

        If the stored expression can no longer be evaluated the schedule is
        disabled instead.

        Returns:
            The updated schedule, or None if it no longer exists
        """
        schedule = await self._get_model(schedule_id)
        if not schedule:
            logger.warning("update_last_run_schedule_not_found", schedule_id=str(schedule_id))
            return None

        ran_at = ran_at or utcnow()

        try:
            next_run_at = calculate_next_run(schedule.cron_expression, schedule.timezone, ran_at)
        except ScheduleValidationError as e:
            logger.error(
                "failed_to_calculate_next_run",
                schedule_id=schedule.id,
                cron_expression=schedule.cron_expression,
                timezone=schedule.timezone,
                error=e.message
            )
            schedule.enabled = False
            schedule.updated_at = utcnow()
            await self.db.commit()
            await self.db.refresh(schedule)
            return ScheduleInfo.from_model(schedule)

        schedule.last_run_at = ran_at
        schedule.next_run_at = next_run_at
        schedule.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(schedule)

        logger.debug(
            "schedule_last_run_updated",
            schedule_id=schedule.id,
            last_run_at=ran_at.isoformat(),
            next_run_at=next_run_at.isoformat()
        )

        return ScheduleInfo.from_model(schedule)

    async def delete(self, schedule_id: str) -> bool:
        """
        Delete a schedule and all of its executions.

        Returns:
            True once deleted

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = await self._get_model(schedule_id)
        if not schedule:
            raise ScheduleNotFoundError(str(schedule_id))

        # Explicit so the cascade does not depend on the backend enforcing FKs
        result = await self.db.execute(
            delete(ScheduleExecutionModel).where(
                ScheduleExecutionModel.schedule_id == schedule.id
            )
        )
        await self.db.delete(schedule)
        await self.db.commit()

        logger.info(
            "schedule_deleted",
            schedule_id=str(schedule_id),
            executions_deleted=result.rowcount
        )

        return True

    async def workspace_stats(self, workspace_id: str, recent_limit: int = 10) -> Dict[str, Any]:
        """
        Schedule and execution counts for a workspace, with the latest runs.
        """
        total = await self.db.scalar(
            select(func.count(AgentScheduleModel.id)).where(
                AgentScheduleModel.workspace_id == workspace_id
            )
        )
        active = await self.db.scalar(
            select(func.count(AgentScheduleModel.id)).where(
                and_(
                    AgentScheduleModel.workspace_id == workspace_id,
                    AgentScheduleModel.enabled == True  # noqa: E712
                )
            )
        )
        executions = await self.db.scalar(
            select(func.count(ScheduleExecutionModel.id))
            .join(AgentScheduleModel, ScheduleExecutionModel.schedule_id == AgentScheduleModel.id)
            .where(AgentScheduleModel.workspace_id == workspace_id)
        )

        from agent_scheduler.services.execution_ledger import ExecutionLedger

        recent = await ExecutionLedger(self.db).recent(limit=recent_limit, workspace_id=workspace_id)

        return {
            "workspace_id": workspace_id,
            "total_schedules": total or 0,
            "active_schedules": active or 0,
            "total_executions": executions or 0,
            "recent_executions": recent
        }

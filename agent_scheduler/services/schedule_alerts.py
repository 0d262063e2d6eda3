"""
Schedule Alerts - failure-rate, stuck-run and engine-down alerting.

This service is responsible for:
- Grading enabled schedules into critical and warning failure tiers
- Flagging executions that have been running for too long
- Flagging a scheduling engine that should be running but is not
- Grouping recent failures by schedule for the monitoring API
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Any, List, Optional, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from agent_scheduler.core.config import settings
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.base import utcnow
from agent_scheduler.services.execution_ledger import ExecutionInfo, ExecutionLedger, ExecutionStats
from agent_scheduler.services.schedule_store import ScheduleInfo, ScheduleStore

logger = get_logger(__name__)


# ============================================================================
# Data Models
# ============================================================================


class AlertLevel(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class AlertType(str, Enum):
    HIGH_FAILURE_RATE = "high_failure_rate"
    ELEVATED_FAILURE_RATE = "elevated_failure_rate"
    STUCK_EXECUTION = "stuck_execution"
    SCHEDULER_DOWN = "scheduler_down"


LEVEL_ORDER = {AlertLevel.CRITICAL: 0, AlertLevel.WARNING: 1, AlertLevel.INFO: 2}


@dataclass
class AlertThresholds:
    """When a schedule's failures turn into an alert"""
    critical_min_failures: int = 3
    critical_success_rate: float = 50.0
    warning_min_failures: int = 2
    warning_success_rate: float = 70.0
    stuck_after: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls) -> "AlertThresholds":
        return cls(
            critical_min_failures=settings.ALERT_CRITICAL_MIN_FAILURES,
            critical_success_rate=settings.ALERT_CRITICAL_SUCCESS_RATE,
            warning_min_failures=settings.ALERT_WARNING_MIN_FAILURES,
            warning_success_rate=settings.ALERT_WARNING_SUCCESS_RATE,
            stuck_after=timedelta(minutes=settings.ALERT_STUCK_EXECUTION_MINUTES)
        )


@dataclass
class ScheduleAlert:
    level: AlertLevel
    type: AlertType
    message: str
    schedule_id: Optional[str] = None
    schedule_name: Optional[str] = None
    execution_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "type": self.type.value,
            "message": self.message,
            "schedule_id": self.schedule_id,
            "schedule_name": self.schedule_name,
            "execution_id": self.execution_id,
            "details": self.details
        }


# ============================================================================
# Rules
# ============================================================================


def failure_rate_alert(
    schedule: ScheduleInfo,
    stats: ExecutionStats,
    thresholds: AlertThresholds
) -> Optional[ScheduleAlert]:
    """
    Grade one schedule's history. The critical tier wins when both match;
    a schedule that matches neither gets no alert.
    """
    if (
        stats.failed >= thresholds.critical_min_failures
        and stats.success_rate < thresholds.critical_success_rate
    ):
        return ScheduleAlert(
            level=AlertLevel.CRITICAL,
            type=AlertType.HIGH_FAILURE_RATE,
            message=(
                f'Schedule "{schedule.name}" has {stats.failed} failures '
                f'with {stats.success_rate:.1f}% success rate'
            ),
            schedule_id=schedule.schedule_id,
            schedule_name=schedule.name,
            details=stats.to_dict()
        )

    if (
        stats.failed >= thresholds.warning_min_failures
        and stats.success_rate < thresholds.warning_success_rate
    ):
        return ScheduleAlert(
            level=AlertLevel.WARNING,
            type=AlertType.ELEVATED_FAILURE_RATE,
            message=(
                f'Schedule "{schedule.name}" showing degraded performance '
                f'with {stats.success_rate:.1f}% success rate'
            ),
            schedule_id=schedule.schedule_id,
            schedule_name=schedule.name,
            details=stats.to_dict()
        )

    return None


def stuck_execution_alert(
    execution: ExecutionInfo,
    thresholds: AlertThresholds,
    now: datetime,
    schedule_name: Optional[str] = None
) -> Optional[ScheduleAlert]:
    if execution.completed_at is not None:
        return None

    running_for = now - execution.started_at
    if running_for <= thresholds.stuck_after:
        return None

    minutes = int(running_for.total_seconds() // 60)
    label = schedule_name or execution.schedule_id
    return ScheduleAlert(
        level=AlertLevel.WARNING,
        type=AlertType.STUCK_EXECUTION,
        message=f'Schedule "{label}" has been running for {minutes} minutes',
        schedule_id=execution.schedule_id,
        schedule_name=schedule_name,
        execution_id=execution.execution_id,
        details={"running_minutes": minutes}
    )


def scheduler_down_alert() -> ScheduleAlert:
    return ScheduleAlert(
        level=AlertLevel.CRITICAL,
        type=AlertType.SCHEDULER_DOWN,
        message="Scheduling engine is not running",
        details={"action": "Restart the scheduling engine"}
    )


def sort_alerts(alerts: Iterable[ScheduleAlert]) -> List[ScheduleAlert]:
    """Critical first, then warning, then info; stable within a level"""
    return sorted(alerts, key=lambda alert: LEVEL_ORDER[alert.level])


def group_failures(executions: Iterable[ExecutionInfo]) -> List[Dict[str, Any]]:
    """
    Bucket failed executions by schedule, keeping the incoming order both
    across and within groups.
    """
    groups: Dict[str, Dict[str, Any]] = {}
    for execution in executions:
        group = groups.setdefault(execution.schedule_id, {
            "schedule_id": execution.schedule_id,
            "schedule_name": execution.schedule_name,
            "failures": []
        })
        group["failures"].append(execution)
    return list(groups.values())


# ============================================================================
# Collection
# ============================================================================


async def collect_alerts(
    db: AsyncSession,
    engine_running: bool,
    thresholds: Optional[AlertThresholds] = None,
    now: Optional[datetime] = None
) -> List[ScheduleAlert]:
    """
    Evaluate every rule against the current database state.

    Args:
        db: Session for the schedule and execution reads
        engine_running: Whether the scheduling engine is expected and up.
            Callers pass True when the engine is disabled by configuration.
        thresholds: Alert thresholds, from settings when omitted
        now: Reference time (naive UTC) for stuck detection

    Returns:
        Alerts ordered critical first
    """
    thresholds = thresholds or AlertThresholds.from_settings()
    now = now or utcnow()

    store = ScheduleStore(db)
    ledger = ExecutionLedger(db)
    alerts: List[ScheduleAlert] = []

    for schedule in await store.list_enabled():
        alert = failure_rate_alert(schedule, await ledger.stats(schedule.schedule_id), thresholds)
        if alert is not None:
            alerts.append(alert)

    running = await ledger.running()
    if running:
        names = {s.schedule_id: s.name for s in await store.list_by_filter()}
        for execution in running:
            alert = stuck_execution_alert(
                execution, thresholds, now, schedule_name=names.get(execution.schedule_id)
            )
            if alert is not None:
                alerts.append(alert)

    if not engine_running:
        alerts.append(scheduler_down_alert())

    alerts = sort_alerts(alerts)

    if alerts:
        logger.info(
            "schedule_alerts_evaluated",
            alert_count=len(alerts),
            critical=sum(1 for a in alerts if a.level == AlertLevel.CRITICAL)
        )

    return alerts

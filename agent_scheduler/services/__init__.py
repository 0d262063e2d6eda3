"""Services package"""

from agent_scheduler.services.agent_adapter import (
    AgentAdapter,
    AgentRef,
    AgentResolver,
    Runnable,
    RunResult
)
from agent_scheduler.services.execution_ledger import (
    ExecutionInfo,
    ExecutionLedger,
    ExecutionStats
)
from agent_scheduler.services.schedule_store import ScheduleInfo, ScheduleStore
from agent_scheduler.services.scheduling_engine import SchedulingEngine

__all__ = [
    "AgentAdapter",
    "AgentRef",
    "AgentResolver",
    "Runnable",
    "RunResult",
    "ExecutionInfo",
    "ExecutionLedger",
    "ExecutionStats",
    "ScheduleInfo",
    "ScheduleStore",
    "SchedulingEngine",
]

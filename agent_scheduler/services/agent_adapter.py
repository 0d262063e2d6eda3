"""
Agent Adapter - one interface over every kind of schedulable agent.

Each agent kind registers a resolver that turns an agent ID into a
Runnable. The scheduling engine only talks to AgentAdapter and never
branches on the agent kind.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from agent_scheduler.core.exceptions import (
    AgentExecutionError,
    AgentResolutionError,
    SchedulerError,
)
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.base import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class AgentRef:
    """Reference to an agent as stored on a schedule"""
    agent_id: str
    agent_type: str

    def __str__(self) -> str:
        return f"{self.agent_type}:{self.agent_id}"


@dataclass
class RunResult:
    """Outcome of a successful agent run"""
    output: Any = None
    tokens_used: int = 0

    @classmethod
    def from_return_value(cls, value: Any) -> "RunResult":
        """
        Normalize whatever an agent returned.

        A mapping with both "output" and "tokens_used" keys carries its own
        cost; anything else is the output verbatim at zero cost.
        """
        if isinstance(value, RunResult):
            return value
        if isinstance(value, dict) and "output" in value and "tokens_used" in value:
            try:
                tokens = int(value.get("tokens_used") or 0)
            except (TypeError, ValueError):
                tokens = 0
            return cls(output=value["output"], tokens_used=max(tokens, 0))
        return cls(output=value, tokens_used=0)


class Runnable(ABC):
    """A resolved agent that can be invoked with a context payload"""

    @abstractmethod
    async def run(self, context: Dict[str, Any]) -> Any:
        """Invoke the agent and return its raw result."""

    @property
    def supports_scheduling(self) -> bool:
        return True

    @property
    def min_interval(self) -> Optional[timedelta]:
        """Shortest allowed gap between scheduled fires, None for no floor"""
        return None


class AgentResolver(ABC):
    """Turns agent IDs of one kind into Runnables"""

    @abstractmethod
    def resolve(self, agent_id: str) -> Runnable:
        """
        Raises:
            AgentResolutionError: If the agent cannot be found or loaded
        """


class AgentAdapter:
    """
    Registry of resolvers keyed by agent kind.

    Usage:
        adapter = AgentAdapter()
        adapter.register("imported", PluginResolver(plugins_dir))
        result = await adapter.run(AgentRef("my-plugin", "imported"), {"prompt": "..."})
    """

    def __init__(self) -> None:
        self._resolvers: Dict[str, AgentResolver] = {}

    def register(self, agent_type: str, resolver: AgentResolver) -> None:
        self._resolvers[agent_type] = resolver
        logger.debug("agent_resolver_registered", agent_type=agent_type)

    def list_types(self) -> List[str]:
        return sorted(self._resolvers.keys())

    def resolve(self, agent_ref: AgentRef) -> Runnable:
        """
        Resolve an agent reference.

        Raises:
            AgentResolutionError: If the kind is unknown or the agent cannot be loaded
        """
        resolver = self._resolvers.get(agent_ref.agent_type)
        if resolver is None:
            supported = ", ".join(self.list_types()) or "<none>"
            raise AgentResolutionError(
                f"Unknown agent type '{agent_ref.agent_type}'. Available types: {supported}",
                agent_id=agent_ref.agent_id,
                agent_type=agent_ref.agent_type
            )
        return resolver.resolve(agent_ref.agent_id)

    async def resolve_async(self, agent_ref: AgentRef) -> Runnable:
        """
        Resolve in a worker thread.

        Resolvers may read files and import plugin code, which must not stall
        the event loop that drives every timer and request.
        """
        return await asyncio.to_thread(self.resolve, agent_ref)

    def supports_scheduling(self, agent_ref: AgentRef) -> bool:
        return self.resolve(agent_ref).supports_scheduling

    def min_interval(self, agent_ref: AgentRef) -> Optional[timedelta]:
        return self.resolve(agent_ref).min_interval

    @staticmethod
    def build_context(
        context: Optional[Dict[str, Any]],
        schedule_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Schedule payload plus the scheduled-run markers every agent receives"""
        payload = dict(context or {})
        payload.update({
            "is_scheduled": True,
            "schedule_id": schedule_id,
            "executed_at": utcnow().isoformat()
        })
        return payload

    async def run(
        self,
        agent_ref: AgentRef,
        context: Optional[Dict[str, Any]] = None,
        schedule_id: Optional[str] = None
    ) -> RunResult:
        """
        Resolve and invoke an agent.

        Args:
            agent_ref: Agent to run
            context: Schedule payload
            schedule_id: Schedule being executed

        Returns:
            RunResult with output and token cost

        Raises:
            AgentResolutionError: If the agent cannot be resolved
            AgentExecutionError: If the agent raised
        """
        try:
            runnable = await self.resolve_async(agent_ref)
        except AgentResolutionError as e:
            e.schedule_id = e.schedule_id or schedule_id
            raise

        try:
            value = await runnable.run(self.build_context(context, schedule_id))
        except SchedulerError:
            raise
        except Exception as e:
            raise AgentExecutionError(
                str(e) or type(e).__name__,
                schedule_id=schedule_id,
                details={"agent": str(agent_ref), "exception_type": type(e).__name__}
            ) from e

        return RunResult.from_return_value(value)

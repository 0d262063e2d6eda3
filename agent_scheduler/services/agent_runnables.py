"""
Runnables for the built-in agent kinds.

- imported: plugin directory with a plugin.json manifest and handler.py
- system: chat handler injected at startup
- flow: JSON flow definition run by an injected flow executor
"""

import asyncio
import importlib.util
import inspect
import json
import re
from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from agent_scheduler.core.config import settings
from agent_scheduler.core.exceptions import AgentResolutionError
from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.models.agent_schedule import AgentType
from agent_scheduler.services.agent_adapter import AgentAdapter, AgentResolver, Runnable
from agent_scheduler.services.cron_expression import parse_frequency

logger = get_logger(__name__)

ChatHandler = Callable[[str, Dict[str, Any]], Union[Any, Awaitable[Any]]]
FlowExecutor = Callable[[Dict[str, Any], Dict[str, Any]], Union[Any, Awaitable[Any]]]

# Agent IDs become path components
_SAFE_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


async def call_handler(fn: Callable, *args: Any) -> Any:
    """Await async handlers, run sync ones in the default executor"""
    if asyncio.iscoroutinefunction(fn):
        return await fn(*args)
    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(None, partial(fn, *args))
    if inspect.isawaitable(result):
        result = await result
    return result


def _check_agent_id(agent_id: str, agent_type: str) -> None:
    if not isinstance(agent_id, str) or not _SAFE_ID.match(agent_id):
        raise AgentResolutionError(
            f"Invalid agent ID: {agent_id!r}",
            agent_id=agent_id,
            agent_type=agent_type
        )


def _read_json(path: Path, agent_id: str, agent_type: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise AgentResolutionError(
            f"{agent_type} agent {agent_id} not found at {path}",
            agent_id=agent_id,
            agent_type=agent_type
        )
    except (OSError, ValueError) as e:
        raise AgentResolutionError(
            f"Failed to read {path.name} for {agent_type} agent {agent_id}: {e}",
            agent_id=agent_id,
            agent_type=agent_type
        ) from e

    if not isinstance(data, dict):
        raise AgentResolutionError(
            f"{path.name} for {agent_type} agent {agent_id} must contain a JSON object",
            agent_id=agent_id,
            agent_type=agent_type
        )
    return data


# ============================================================================
# Imported plugins
# ============================================================================


class PluginRunnable(Runnable):
    """An imported plugin's handler(context) function"""

    def __init__(self, hub_id: str, manifest: Dict[str, Any], handler: Callable):
        self.hub_id = hub_id
        self.manifest = manifest
        self.handler = handler

    @property
    def _scheduling(self) -> Dict[str, Any]:
        capabilities = self.manifest.get("capabilities") or {}
        return capabilities.get("scheduling") or {}

    @property
    def supports_scheduling(self) -> bool:
        return self._scheduling.get("supported", True) is not False

    @property
    def min_interval(self) -> Optional[timedelta]:
        try:
            return parse_frequency(self._scheduling.get("maxFrequency"))
        except ValueError:
            logger.warning(
                "invalid_plugin_max_frequency",
                hub_id=self.hub_id,
                max_frequency=self._scheduling.get("maxFrequency")
            )
            return None

    async def run(self, context: Dict[str, Any]) -> Any:
        return await call_handler(self.handler, context)


class PluginResolver(AgentResolver):
    """Loads plugins from <plugins_dir>/<hub_id>/"""

    MANIFEST_FILE = "plugin.json"
    HANDLER_FILE = "handler.py"

    def __init__(self, plugins_dir: Union[str, Path]):
        self.plugins_dir = Path(plugins_dir)
        # hub_id -> (manifest mtime, handler mtime, runnable)
        self._loaded: Dict[str, Tuple[float, float, PluginRunnable]] = {}

    @staticmethod
    def _mtime(path: Path) -> Optional[float]:
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    def resolve(self, agent_id: str) -> PluginRunnable:
        """
        Load a plugin, reusing the previous load while neither plugin.json
        nor handler.py has changed on disk. Blocking; callers on the event
        loop go through AgentAdapter.resolve_async.
        """
        agent_type = AgentType.IMPORTED.value
        _check_agent_id(agent_id, agent_type)

        plugin_dir = self.plugins_dir / agent_id
        manifest_mtime = self._mtime(plugin_dir / self.MANIFEST_FILE)
        handler_mtime = self._mtime(plugin_dir / self.HANDLER_FILE)
        cached = self._loaded.get(agent_id)
        if (
            cached is not None
            and manifest_mtime is not None
            and handler_mtime is not None
            and cached[:2] == (manifest_mtime, handler_mtime)
        ):
            return cached[2]

        manifest = _read_json(plugin_dir / self.MANIFEST_FILE, agent_id, agent_type)

        handler_path = plugin_dir / self.HANDLER_FILE
        if not handler_path.is_file():
            raise AgentResolutionError(
                f"Plugin {agent_id} has no {self.HANDLER_FILE}",
                agent_id=agent_id,
                agent_type=agent_type
            )

        module_name = f"agent_scheduler_plugins.{agent_id.replace('.', '_').replace('-', '_')}"
        try:
            spec = importlib.util.spec_from_file_location(module_name, str(handler_path))
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception as e:
            logger.error(
                "plugin_load_failed",
                hub_id=agent_id,
                path=str(handler_path),
                error=str(e)
            )
            raise AgentResolutionError(
                f"Failed to load plugin {agent_id}: {e}",
                agent_id=agent_id,
                agent_type=agent_type
            ) from e

        handler = getattr(module, "handler", None)
        if not callable(handler):
            raise AgentResolutionError(
                f"Plugin {agent_id} does not export a handler(context) function",
                agent_id=agent_id,
                agent_type=agent_type
            )

        runnable = PluginRunnable(agent_id, manifest, handler)
        if manifest_mtime is not None and handler_mtime is not None:
            self._loaded[agent_id] = (manifest_mtime, handler_mtime, runnable)
        return runnable


# ============================================================================
# System agents
# ============================================================================


class SystemRunnable(Runnable):
    """The built-in chat agent, driven by context["prompt"]"""

    def __init__(self, agent_id: str, chat_handler: ChatHandler):
        self.agent_id = agent_id
        self.chat_handler = chat_handler

    async def run(self, context: Dict[str, Any]) -> Any:
        prompt = context.get("prompt") or ""
        return await call_handler(self.chat_handler, prompt, context)


class SystemResolver(AgentResolver):
    def __init__(self, chat_handler: Optional[ChatHandler] = None):
        self.chat_handler = chat_handler

    def resolve(self, agent_id: str) -> SystemRunnable:
        if self.chat_handler is None:
            raise AgentResolutionError(
                "No chat handler is configured for system agents",
                agent_id=agent_id,
                agent_type=AgentType.SYSTEM.value
            )
        return SystemRunnable(agent_id, self.chat_handler)


# ============================================================================
# Flows
# ============================================================================


class FlowRunnable(Runnable):
    """A stored flow definition handed to the flow executor"""

    def __init__(self, flow_id: str, flow: Dict[str, Any], executor: FlowExecutor):
        self.flow_id = flow_id
        self.flow = flow
        self.executor = executor

    @property
    def supports_scheduling(self) -> bool:
        # Inactive flows cannot be scheduled
        return self.flow.get("active", True) is not False

    async def run(self, context: Dict[str, Any]) -> Any:
        return await call_handler(self.executor, self.flow, context)


class FlowResolver(AgentResolver):
    """Loads flows from <flows_dir>/<flow_id>.json"""

    def __init__(self, flows_dir: Union[str, Path], executor: Optional[FlowExecutor] = None):
        self.flows_dir = Path(flows_dir)
        self.executor = executor

    def resolve(self, agent_id: str) -> FlowRunnable:
        agent_type = AgentType.FLOW.value
        _check_agent_id(agent_id, agent_type)

        flow = _read_json(self.flows_dir / f"{agent_id}.json", agent_id, agent_type)

        if self.executor is None:
            raise AgentResolutionError(
                "No flow executor is configured",
                agent_id=agent_id,
                agent_type=agent_type
            )

        return FlowRunnable(agent_id, flow, self.executor)


def build_agent_adapter(
    chat_handler: Optional[ChatHandler] = None,
    flow_executor: Optional[FlowExecutor] = None,
    plugins_dir: Optional[Union[str, Path]] = None,
    flows_dir: Optional[Union[str, Path]] = None
) -> AgentAdapter:
    """Adapter with the imported, system and flow resolvers registered"""
    adapter = AgentAdapter()
    adapter.register(
        AgentType.IMPORTED.value,
        PluginResolver(plugins_dir or settings.PLUGINS_DIR)
    )
    adapter.register(AgentType.SYSTEM.value, SystemResolver(chat_handler))
    adapter.register(
        AgentType.FLOW.value,
        FlowResolver(flows_dir or settings.FLOWS_DIR, flow_executor)
    )
    return adapter

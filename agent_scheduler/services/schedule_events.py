"""
Schedule events - notifications about scheduled executions.

The engine emits events through ScheduleEventBus without waiting on
listeners. ScheduleWebSocketManager is the listener that fans events out
to WebSocket clients subscribed to a workspace.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from fastapi import WebSocket

from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.core.monitoring import MetricsCollector

logger = get_logger(__name__)

EVENT_STARTED = "started"
EVENT_COMPLETED = "completed"
EVENT_FAILED = "failed"
EVENT_DISABLED = "disabled"

EventListener = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


def build_event(
    event: str,
    schedule_id: str,
    workspace_id: Optional[str] = None,
    schedule_name: Optional[str] = None,
    execution_id: Optional[str] = None,
    **data: Any
) -> Dict[str, Any]:
    message = {
        "type": f"schedule_{event}",
        "schedule_id": schedule_id,
        "schedule_name": schedule_name,
        "workspace_id": workspace_id,
        "execution_id": execution_id,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    message.update(data)
    return message


class ScheduleEventBus:
    """
    Fire-and-forget dispatch to registered listeners.

    A failing or slow listener never affects the emitter; listener errors
    are logged and dropped.
    """

    def __init__(self):
        self._listeners: list = []
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, listener: EventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _deliver(self, listener: EventListener, event: Dict[str, Any]) -> None:
        try:
            result = listener(event)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(
                "schedule_event_listener_failed",
                event_type=event.get("type"),
                schedule_id=event.get("schedule_id"),
                error=str(e)
            )

    def emit(self, event: str, schedule_id: str, **kwargs: Any) -> Dict[str, Any]:
        """Build an event and hand it to every listener in the background"""
        message = build_event(event, schedule_id, **kwargs)

        for listener in list(self._listeners):
            task = asyncio.create_task(self._deliver(listener, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        return message

    async def drain(self) -> None:
        """Wait for deliveries that are still in flight"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ScheduleWebSocketManager:
    """
    WebSocket connections grouped by workspace.

    A connection registered without a workspace receives events for every
    workspace.
    """

    ALL_WORKSPACES = "*"

    def __init__(self):
        # {connection_id: websocket}
        self.active_connections: Dict[str, WebSocket] = {}

        # {workspace_id or "*": {connection_id}}
        self.workspace_connections: Dict[str, Set[str]] = {}

        # {connection_id: workspace_id or "*"}
        self.connection_workspace: Dict[str, str] = {}

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    async def connect(
        self,
        websocket: WebSocket,
        connection_id: str,
        workspace_id: Optional[str] = None
    ) -> None:
        await websocket.accept()

        key = workspace_id or self.ALL_WORKSPACES
        self.active_connections[connection_id] = websocket
        self.workspace_connections.setdefault(key, set()).add(connection_id)
        self.connection_workspace[connection_id] = key

        MetricsCollector.update_websocket_connections(self.connection_count)

        logger.info(
            "schedule_websocket_connected",
            connection_id=connection_id,
            workspace_id=workspace_id
        )

    async def disconnect(self, connection_id: str) -> None:
        websocket = self.active_connections.pop(connection_id, None)
        if websocket is None:
            return

        key = self.connection_workspace.pop(connection_id, None)
        if key in self.workspace_connections:
            self.workspace_connections[key].discard(connection_id)
            if not self.workspace_connections[key]:
                del self.workspace_connections[key]

        MetricsCollector.update_websocket_connections(self.connection_count)

        logger.info("schedule_websocket_disconnected", connection_id=connection_id)

    async def send_personal_message(self, message: Dict[str, Any], connection_id: str) -> bool:
        """
        Send message to a specific connection.

        Returns:
            True if message sent successfully, False otherwise
        """
        websocket = self.active_connections.get(connection_id)
        if not websocket:
            return False

        try:
            await websocket.send_json(message)
            MetricsCollector.record_websocket_message("sent")
            return True
        except Exception as e:
            logger.error(
                "failed_to_send_schedule_event",
                connection_id=connection_id,
                error=str(e)
            )
            return False

    async def broadcast(self, event: Dict[str, Any]) -> int:
        """
        Send an event to the workspace's subscribers and to catch-all subscribers.

        Returns:
            Number of clients that received the event
        """
        recipients = set(self.workspace_connections.get(self.ALL_WORKSPACES, set()))
        workspace_id = event.get("workspace_id")
        if workspace_id:
            recipients |= self.workspace_connections.get(workspace_id, set())

        sent_count = 0
        disconnected = []

        for connection_id in recipients:
            if await self.send_personal_message(event, connection_id):
                sent_count += 1
            else:
                disconnected.append(connection_id)

        # Clean up broken connections
        for connection_id in disconnected:
            await self.disconnect(connection_id)

        if sent_count:
            logger.debug(
                "schedule_event_broadcast",
                event_type=event.get("type"),
                workspace_id=workspace_id,
                recipient_count=sent_count
            )

        return sent_count


# Global instance
schedule_websocket_manager = ScheduleWebSocketManager()

"""WebSocket Endpoint for schedule events"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from agent_scheduler.core.logging_config import get_logger
from agent_scheduler.core.monitoring import MetricsCollector
from agent_scheduler.services.schedule_events import schedule_websocket_manager

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.websocket("/ws/schedules")
async def schedule_events_websocket(
    websocket: WebSocket,
    workspace_id: Optional[str] = None
):
    """
    Stream schedule execution events.

    Connect with `?workspace_id=` to receive one workspace's events, or
    without it to receive all of them.

    Message Format:
    - Client -> Server:
      {"action": "ping"}

    - Server -> Client:
      {
        "type": "connected" | "schedule_started" | "schedule_completed"
              | "schedule_failed" | "schedule_disabled" | "pong" | "error",
        "schedule_id": "uuid",
        "execution_id": "uuid",
        "workspace_id": "...",
        "timestamp": "ISO8601"
      }
    """
    manager = schedule_websocket_manager
    connection_id = str(uuid.uuid4())

    try:
        await manager.connect(websocket, connection_id, workspace_id)

        await websocket.send_json({
            "type": "connected",
            "connection_id": connection_id,
            "workspace_id": workspace_id,
            "timestamp": _now()
        })

        while True:
            data = await websocket.receive_json()
            MetricsCollector.record_websocket_message("received")

            action = data.get("action") if isinstance(data, dict) else None

            if action == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})
            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                    "timestamp": _now()
                })

    except WebSocketDisconnect:
        logger.info("schedule_websocket_client_disconnected", connection_id=connection_id)

    except Exception as e:
        logger.error(
            "schedule_websocket_error",
            connection_id=connection_id,
            error=str(e)
        )

    finally:
        await manager.disconnect(connection_id)

"""Live updates over WebSocket."""
import json
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from socialsync.auth import get_websocket_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/live", tags=["Live"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, user_id: Optional[str] = Query(default=None)):
    """
    WebSocket endpoint for state-change pushes.

    Connect with ``?user_id=<id>`` to receive:
    - ``chat_updated``: snapshot of an open conversation
    - ``notifications_updated``: unseen count and badge
    - ``chat_list_refresh``: the inbox should reload

    Badge counts are polled while at least one socket is connected.
    Send ``{"action": "ping"}`` to get a ``pong``.
    """
    user_id = get_websocket_user_id(user_id)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    registry = websocket.app.state.registry
    connections = registry.connections
    await connections.connect(websocket, user_id)
    registry.mount(user_id)
    logger.info(f"🔌 WebSocket connected for {user_id}. Total connections: {connections.connection_count}")

    try:
        await websocket.send_json({
            "type": "connected",
            "user_id": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON message"})
                continue

            if message.get("action") == "ping":
                await websocket.send_json({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
    except WebSocketDisconnect:
        logger.info(f"WebSocket for {user_id} disconnected")
    finally:
        connections.disconnect(websocket)
        await registry.unmount(user_id)

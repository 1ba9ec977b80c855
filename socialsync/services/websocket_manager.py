"""WebSocket fan-out of state-change events to connected UI shells."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)

CHAT_UPDATED = "chat_updated"
NOTIFICATIONS_UPDATED = "notifications_updated"
CHAT_LIST_REFRESH = "chat_list_refresh"


class ConnectionManager:
    """Manage WebSocket connections keyed by user id."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self._user_map: Dict[WebSocket, str] = {}

    async def connect(self, websocket: WebSocket, user_id: str):
        """Accept a new WebSocket connection for ``user_id``."""
        await websocket.accept()
        self.active_connections.append(websocket)
        self._user_map[websocket] = user_id

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        self._user_map.pop(websocket, None)

    async def send_to_user(self, user_id: str, event: str, data: Any = None) -> int:
        """Send one event to every connection of ``user_id``; returns deliveries."""
        message = {
            "type": event,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        delivered = 0
        disconnected = []
        for ws, uid in list(self._user_map.items()):
            if uid != user_id:
                continue
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as e:
                logger.debug(f"Dropping socket for {user_id}: {e}")
                disconnected.append(ws)
        for ws in disconnected:
            self.disconnect(ws)
        return delivered

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)


# Global connection manager instance
manager = ConnectionManager()

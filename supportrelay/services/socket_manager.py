"""
WebSocket connection tracking for web users and the live dashboard.
"""
from typing import Any

from fastapi import WebSocket

from supportrelay.logging_config import get_logger

logger = get_logger("socket_manager")

# Push events
SESSION_CREATED = "session_created"
SESSION_UPDATED = "session_updated"
MESSAGE_APPENDED = "message_appended"
MODE_CHANGED = "mode_changed"
ESCALATION_REQUESTED = "escalation_requested"
ACTIVE_CHATS_SNAPSHOT = "active_chats_snapshot"
ERROR = "error"


def event_payload(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


class ConnectionManager:
    """Manages WebSocket connections.

    Dashboards receive every push event. Web users only receive events of
    the chat they connected to.
    """

    def __init__(self):
        self.dashboards: set[WebSocket] = set()
        self.chat_connections: dict[str, set[WebSocket]] = {}

    async def connect_dashboard(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.dashboards.add(websocket)
        logger.info(f"Dashboard connected, total={len(self.dashboards)}")

    async def connect_chat(self, websocket: WebSocket, chat_id: str) -> None:
        await websocket.accept()
        self.chat_connections.setdefault(chat_id, set()).add(websocket)
        logger.info(f"Web user connected to chat {chat_id}")

    def disconnect(self, websocket: WebSocket) -> None:
        self.dashboards.discard(websocket)
        for chat_id in list(self.chat_connections):
            connections = self.chat_connections[chat_id]
            connections.discard(websocket)
            if not connections:
                del self.chat_connections[chat_id]

    def has_chat_connection(self, chat_id: str) -> bool:
        return bool(self.chat_connections.get(chat_id))

    async def _send(self, websocket: WebSocket, payload: dict) -> bool:
        try:
            await websocket.send_json(payload)
            return True
        except Exception as e:
            logger.error(f"Error sending {payload.get('event')} to websocket: {e}")
            self.disconnect(websocket)
            return False

    async def send(self, websocket: WebSocket, event: str, data: Any) -> bool:
        return await self._send(websocket, event_payload(event, data))

    async def broadcast_dashboard(self, event: str, data: Any) -> int:
        """Push to every dashboard. Returns the number of sockets reached."""
        payload = event_payload(event, data)
        delivered = 0
        for websocket in list(self.dashboards):
            if await self._send(websocket, payload):
                delivered += 1
        return delivered

    async def send_to_chat(self, chat_id: str, event: str, data: Any) -> int:
        """Push to the web user sockets of one chat."""
        payload = event_payload(event, data)
        delivered = 0
        for websocket in list(self.chat_connections.get(chat_id, ())):
            if await self._send(websocket, payload):
                delivered += 1
        return delivered

import logging
from typing import Any, Dict, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Open dashboard websockets, grouped by the user that opened them.

    A reporter only hears about their own complaints; admin sockets hear
    about every complaint.
    """

    def __init__(self):
        self.user_connections: Dict[str, List[WebSocket]] = {}
        self.admin_connections: List[WebSocket] = []

    def __len__(self) -> int:
        return len(self.admin_connections) + sum(len(sockets) for sockets in self.user_connections.values())

    async def connect(self, websocket: WebSocket, user_id: str, is_admin: bool = False):
        await websocket.accept()
        self.register(websocket, user_id, is_admin)
        logger.info(f"🔌 WebSocket connected for {'admin' if is_admin else 'user'} {user_id} ({len(self)} active)")

    def register(self, websocket: WebSocket, user_id: str, is_admin: bool = False):
        if is_admin:
            self.admin_connections.append(websocket)
        else:
            self.user_connections.setdefault(user_id, []).append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.admin_connections:
            self.admin_connections.remove(websocket)
        for user_id, sockets in list(self.user_connections.items()):
            if websocket in sockets:
                sockets.remove(websocket)
                if not sockets:
                    del self.user_connections[user_id]
        logger.info(f"🔌 WebSocket disconnected ({len(self)} active)")

    async def notify(self, message: Dict[str, Any], user_id: str) -> int:
        """Send to the user's sockets and to every admin, dropping the ones that fail. Returns deliveries."""
        recipients = list(self.user_connections.get(user_id, [])) + list(self.admin_connections)
        delivered = 0
        for connection in recipients:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"⚠️ Dropping websocket after send failure: {e}")
                self.disconnect(connection)
        return delivered


manager = ConnectionManager()

import logging
from typing import Dict, Iterable, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[WebSocket]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        if user_id not in self.active_connections:
            self.active_connections[user_id] = []
        self.active_connections[user_id].append(websocket)

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        if user_id in self.active_connections:
            try:
                self.active_connections[user_id].remove(websocket)
            except ValueError:
                pass
            if not self.active_connections[user_id]:
                del self.active_connections[user_id]

    def connected_users(self) -> List[str]:
        return list(self.active_connections)

    async def send_personal_message(self, receiver_id: str, message: str) -> None:
        for conn in list(self.active_connections.get(receiver_id, [])):
            try:
                await conn.send_text(message)
            except RuntimeError:
                logger.warning("Dropping closed connection of %s", receiver_id)
                self.disconnect(receiver_id, conn)

    async def send_to_users(self, user_ids: Iterable[str], message: str) -> None:
        for user_id in set(user_ids):
            await self.send_personal_message(user_id, message)

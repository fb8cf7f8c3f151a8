import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from groupchat.exceptions import ChatError
from groupchat.schemas.message import ChatFrame
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.dependencies import get_conversation_service
from groupchat.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])
manager = ConnectionManager()


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await websocket.send_text(json.dumps({"type": "error", "detail": detail}))


@router.websocket("/ws/chat/{user_id}")
async def chat_socket(websocket: WebSocket, user_id: str, service: ConversationService = Depends(get_conversation_service)):
    await manager.connect(user_id, websocket)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                frame = ChatFrame.model_validate_json(data)
            except ValidationError:
                await _send_error(websocket, "Invalid message payload")
                continue

            try:
                if frame.type == "text":
                    saved = await service.create_message({"channel": frame.channel, "creator": user_id, "text": frame.text})
                    ack = {"message_id": saved["_id"], "conversation_id": saved["channel"], "client_message_id": frame.client_message_id}
                else:
                    await service.mark_all_messages_as_read(user_id, frame.channel)
                    ack = {"conversation_id": frame.channel, "client_message_id": frame.client_message_id}
                await websocket.send_text(json.dumps({"type": "ack", "ack": ack}))
            except ChatError as exc:
                logger.warning("Websocket request from %s failed: %s", user_id, exc.message)
                await _send_error(websocket, exc.message)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(user_id, websocket)

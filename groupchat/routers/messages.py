from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from groupchat.schemas.conversation import ModerateIn
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.dependencies import get_conversation_service


router = APIRouter(prefix="/messages", tags=["chat"])


@router.get("")
async def list_messages(limit: Optional[int] = None, offset: Optional[int] = None, creator: Optional[str] = None, service: ConversationService = Depends(get_conversation_service)):
    return await service.list_messages(limit=limit, offset=offset, creator=creator)


@router.get("/{message_id}")
async def get_message(message_id: str, service: ConversationService = Depends(get_conversation_service)):
    message = await service.get_message(message_id)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.put("/{message_id}/moderate")
async def moderate_message(message_id: str, body: ModerateIn, service: ConversationService = Depends(get_conversation_service)):
    message = await service.moderate_message(message_id, body.moderate)
    if message is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return message

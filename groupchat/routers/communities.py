from fastapi import APIRouter, Depends, HTTPException

from groupchat.schemas.conversation import CommunityConversationModifications
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.dependencies import get_conversation_service


router = APIRouter(prefix="/communities", tags=["chat"])


@router.get("/{community_id}/conversation")
async def get_community_conversation(community_id: str, service: ConversationService = Depends(get_conversation_service)):
    conversation = await service.get_community_conversation(community_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Community conversation not found")
    return conversation


@router.patch("/{community_id}/conversation")
async def update_community_conversation(community_id: str, body: CommunityConversationModifications, service: ConversationService = Depends(get_conversation_service)):
    return await service.update_community_conversation(community_id, body.model_dump())

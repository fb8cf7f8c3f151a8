from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from groupchat.schemas.conversation import ConversationCreate, ConversationModifications, ModerateIn, TopicIn
from groupchat.schemas.message import MessageCreate
from groupchat.services.conversation_service import UNSET, ConversationService
from groupchat.utils.dependencies import get_conversation_service, get_current_user_id


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("")
async def list_for_current_user(current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    return await service.find_conversation(members=[current_user], ignore_member_filter_for_channel=True)


@router.get("/find")
async def find_conversations(
    type: Optional[List[str]] = Query(None),
    members: Optional[List[str]] = Query(None),
    exact_members_match: bool = False,
    ignore_member_filter_for_channel: bool = False,
    moderate: bool = False,
    name: Optional[str] = None,
    no_name: bool = False,
    service: ConversationService = Depends(get_conversation_service),
):
    return await service.find_conversation(
        type=type,
        members=members,
        exact_members_match=exact_members_match,
        ignore_member_filter_for_channel=ignore_member_filter_for_channel,
        moderate=moderate,
        name=None if no_name else (name or UNSET),
    )


@router.get("/all")
async def list_conversations(limit: Optional[int] = None, offset: Optional[int] = None, creator: Optional[str] = None, service: ConversationService = Depends(get_conversation_service)):
    return await service.list_conversations(limit=limit, offset=offset, creator=creator)


@router.get("/channels")
async def get_channels(moderate: bool = False, service: ConversationService = Depends(get_conversation_service)):
    return await service.get_channels(moderate=moderate)


@router.post("", status_code=201)
async def create_conversation(body: ConversationCreate, current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    spec = body.model_dump(exclude_none=True)
    spec["creator"] = current_user
    spec["members"] = [current_user] + [m for m in body.members if m != current_user]
    for field in ("topic", "purpose"):
        if field in spec:
            spec[field]["creator"] = current_user
    return await service.create_conversation(spec)


@router.get("/{conversation_id}")
async def get_conversation(conversation_id: str, service: ConversationService = Depends(get_conversation_service)):
    conversation = await service.get_conversation(conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.patch("/{conversation_id}")
async def update_conversation(conversation_id: str, body: ConversationModifications, service: ConversationService = Depends(get_conversation_service)):
    return await service.update_conversation(conversation_id, body.model_dump())


@router.delete("/{conversation_id}", status_code=204)
async def delete_conversation(conversation_id: str, current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    # unknown conversation and non-member both end as a no-op
    await service.delete_conversation(current_user, conversation_id)
    return Response(status_code=204)


@router.put("/{conversation_id}/members/{user_id}")
async def add_member(conversation_id: str, user_id: str, service: ConversationService = Depends(get_conversation_service)):
    return await service.add_member_to_conversation(conversation_id, user_id)


@router.delete("/{conversation_id}/members/{user_id}")
async def remove_member(conversation_id: str, user_id: str, service: ConversationService = Depends(get_conversation_service)):
    return await service.remove_member_from_conversation(conversation_id, user_id)


@router.put("/{conversation_id}/topic")
async def update_topic(conversation_id: str, body: TopicIn, current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    return await service.update_topic(conversation_id, {"value": body.value, "creator": current_user, "last_set": body.last_set})


@router.post("/{conversation_id}/readed")
async def mark_all_messages_as_read(conversation_id: str, current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    conversation = await service.mark_all_messages_as_read(current_user, conversation_id)
    return {"numOfMessage": conversation.get("numOfMessage", 0), "numOfReadedMessage": conversation.get("numOfReadedMessage", {}).get(current_user, 0)}


@router.put("/{conversation_id}/moderate")
async def moderate_conversation(conversation_id: str, body: ModerateIn, service: ConversationService = Depends(get_conversation_service)):
    conversation = await service.moderate_conversation(conversation_id, body.moderate)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


@router.get("/{conversation_id}/messages")
async def get_messages(conversation_id: str, limit: Optional[int] = Query(None, ge=1, le=200), offset: int = Query(0, ge=0), moderate: bool = False, service: ConversationService = Depends(get_conversation_service)):
    return await service.get_messages(conversation_id, limit=limit, offset=offset, moderate=moderate)


@router.post("/{conversation_id}/messages", status_code=201)
async def create_message(conversation_id: str, body: MessageCreate, current_user: str = Depends(get_current_user_id), service: ConversationService = Depends(get_conversation_service)):
    return await service.create_message({"channel": conversation_id, "creator": current_user, "text": body.text, "type": body.type})

from fastapi import Depends, Header, HTTPException

from groupchat.database.connection import mongo_db_dependency
from groupchat.repositories.conversation_repository import ConversationRepository
from groupchat.repositories.message_repository import MessageRepository
from groupchat.repositories.user_repository import UserRepository
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.event_bus import EventBus, get_bus


def get_event_bus() -> EventBus:
    return get_bus()


def get_conversation_service(db=Depends(mongo_db_dependency), bus: EventBus = Depends(get_event_bus)) -> ConversationService:
    return ConversationService(ConversationRepository(db), MessageRepository(db), UserRepository(db), bus)


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # identity is established upstream; sessions are not handled here
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from groupchat.client.store import ConversationsStore, ref_id
from groupchat.constants import ConversationType
from groupchat.services.conversation_service import ConversationService

logger = logging.getLogger(__name__)


class ConversationActions:
    """Remote conversation operations mirrored into the local store.

    The store is only touched once the remote call has succeeded; errors
    propagate to the caller.
    """

    def __init__(
        self,
        service: ConversationService,
        store: ConversationsStore,
        user_id: str,
        on_unset_active: Optional[Callable[[], None]] = None,
    ) -> None:
        self._service = service
        self._store = store
        self._user_id = user_id
        self._on_unset_active = on_unset_active

    async def start(self) -> None:
        conversations = await self._service.find_conversation(
            members=[self._user_id], ignore_member_filter_for_channel=True
        )
        self._store.add_conversations(conversations)

    async def _add(self, conversation_type: ConversationType, spec: Dict[str, Any]) -> Dict[str, Any]:
        members = [self._user_id] + [m for m in spec.get("members", []) if m != self._user_id]
        conversation = await self._service.create_conversation(
            dict(spec, type=conversation_type, creator=self._user_id, members=members)
        )
        self._store.add_conversation(conversation)
        return conversation

    async def add_channel(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return await self._add(ConversationType.CHANNEL, spec)

    async def add_private_conversation(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        return await self._add(ConversationType.CONFIDENTIAL, spec)

    async def delete_conversation(self, conversation: Dict[str, Any]) -> None:
        await self._service.delete_conversation(self._user_id, ref_id(conversation))
        self._store.delete_conversation(conversation)

    async def join_conversation(self, conversation: Dict[str, Any]) -> Dict[str, Any]:
        joined = await self._service.add_member_to_conversation(ref_id(conversation), self._user_id)
        self._store.join_conversation(joined)
        return joined

    async def leave_conversation(self, conversation: Dict[str, Any]) -> None:
        await self._service.remove_member_from_conversation(ref_id(conversation), self._user_id)
        self._store.delete_conversation(conversation)

    async def mark_all_messages_as_read(self, conversation: Any) -> None:
        await self._service.mark_all_messages_as_read(self._user_id, ref_id(conversation))
        self._store.mark_all_messages_as_read(conversation)

    async def update_conversation(self, conversation_id: str, modifications: Dict[str, Any]) -> Dict[str, Any]:
        updated = await self._service.update_conversation(conversation_id, modifications)
        self._store.update_conversation(updated)
        return updated

    async def update_conversation_topic(self, conversation: Dict[str, Any], topic: str) -> Dict[str, Any]:
        updated = await self._service.update_topic(ref_id(conversation), {"value": topic, "creator": self._user_id})
        self._store.update_topic(updated, updated["topic"])
        return updated

    def set_active(self, conversation: Dict[str, Any]) -> None:
        self._store.set_active(conversation)

    def unset_active(self) -> None:
        self._store.unset_active()
        if self._on_unset_active is not None:
            self._on_unset_active()

    def increase_number_of_unread_messages(self, conversation_id: Any) -> None:
        self._store.increase_number_of_unread_messages(conversation_id)

    def update_user_mentions_count(self, conversation_id: Any, message_user_mentions: Optional[Iterable[Any]] = None) -> None:
        if not message_user_mentions:
            return
        if any(ref_id(user) == self._user_id for user in message_user_mentions):
            self._store.increase_user_mentions_count(conversation_id)

    def update_members(self, conversation: Dict[str, Any], members_count: Optional[int] = None) -> None:
        if conversation.get("type") == ConversationType.CONFIDENTIAL.value and conversation.get("members") is not None:
            self._store.set_members(conversation, conversation["members"])
        if members_count:
            self._store.update_members_count(conversation, members_count)

import logging
from typing import Any, Dict, Iterable, List, Optional

from groupchat.constants import ConversationType

logger = logging.getLogger(__name__)


def ref_id(value: Any) -> Optional[str]:
    """Id of a reference that may be populated (``{"_id": ...}``) or raw."""
    if value is None:
        return None
    if isinstance(value, dict):
        return str(value.get("_id")) if value.get("_id") is not None else None
    return str(value)


class ConversationsStore:
    """Local read model of the conversations visible to one user."""

    def __init__(self, user_id: Optional[str] = None) -> None:
        self.user_id = user_id
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.active_room: Dict[str, Any] = {}
        self.unread_messages: Dict[str, int] = {}
        self.user_mentions: Dict[str, int] = {}
        self.members_count: Dict[str, int] = {}

    @property
    def channels(self) -> List[Dict[str, Any]]:
        return [c for c in self.conversations.values() if c.get("type") == ConversationType.CHANNEL.value]

    @property
    def private_conversations(self) -> List[Dict[str, Any]]:
        return [c for c in self.conversations.values() if c.get("type") == ConversationType.CONFIDENTIAL.value]

    def find_conversation(self, conversation_id: Any) -> Optional[Dict[str, Any]]:
        return self.conversations.get(ref_id(conversation_id))

    def add_conversation(self, conversation: Dict[str, Any]) -> None:
        cid = ref_id(conversation)
        if cid in self.conversations:
            return
        self.conversations[cid] = conversation
        read = (conversation.get("numOfReadedMessage") or {}).get(self.user_id, 0) if self.user_id else 0
        self.unread_messages[cid] = max(0, conversation.get("numOfMessage", 0) - read)
        self.user_mentions.setdefault(cid, 0)
        self.members_count[cid] = len(conversation.get("members") or [])

    def add_conversations(self, conversations: Iterable[Dict[str, Any]]) -> None:
        for conversation in conversations:
            self.add_conversation(conversation)

    def join_conversation(self, conversation: Dict[str, Any]) -> None:
        self.add_conversation(conversation)

    def delete_conversation(self, conversation: Any) -> None:
        cid = ref_id(conversation)
        self.conversations.pop(cid, None)
        self.unread_messages.pop(cid, None)
        self.user_mentions.pop(cid, None)
        self.members_count.pop(cid, None)
        if ref_id(self.active_room) == cid:
            self.unset_active()

    def update_conversation(self, conversation: Dict[str, Any]) -> None:
        cid = ref_id(conversation)
        if cid not in self.conversations:
            logger.debug("Ignoring update of unknown conversation %s", cid)
            return
        self.conversations[cid] = dict(self.conversations[cid], **conversation)
        if "members" in conversation:
            self.members_count[cid] = len(conversation["members"] or [])

    def update_topic(self, conversation: Any, topic: Dict[str, Any]) -> None:
        stored = self.find_conversation(conversation)
        if stored is not None:
            stored["topic"] = topic

    def set_members(self, conversation: Any, members: List[Any]) -> None:
        stored = self.find_conversation(conversation)
        if stored is not None:
            stored["members"] = members

    def update_members_count(self, conversation: Any, count: int) -> None:
        cid = ref_id(conversation)
        if cid in self.conversations:
            self.members_count[cid] = count

    def increase_number_of_unread_messages(self, conversation_id: Any) -> None:
        cid = ref_id(conversation_id)
        if cid in self.conversations:
            self.unread_messages[cid] = self.unread_messages.get(cid, 0) + 1

    def increase_user_mentions_count(self, conversation_id: Any) -> None:
        cid = ref_id(conversation_id)
        if cid in self.conversations:
            self.user_mentions[cid] = self.user_mentions.get(cid, 0) + 1

    def mark_all_messages_as_read(self, conversation_id: Any) -> None:
        cid = ref_id(conversation_id)
        if cid in self.conversations:
            self.unread_messages[cid] = 0
            self.user_mentions[cid] = 0

    def set_active(self, conversation: Dict[str, Any]) -> None:
        self.active_room = conversation

    def unset_active(self) -> None:
        self.active_room = {}

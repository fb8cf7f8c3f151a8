import logging
from typing import Any, Dict, List

from groupchat.client.actions import ConversationActions
from groupchat.client.store import ConversationsStore, ref_id
from groupchat.constants import ConversationType, Topics
from groupchat.services.mentions import render_mentions
from groupchat.utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class ConversationListener:
    """Keeps a ConversationsStore in sync with the events published on the bus."""

    def __init__(self, bus: EventBus, store: ConversationsStore, actions: ConversationActions, user_id: str) -> None:
        self._bus = bus
        self._store = store
        self._actions = actions
        self._user_id = user_id
        self._subscriptions: List[Any] = []

    async def start(self) -> None:
        handlers = {
            Topics.CONVERSATION_CREATED: self.add_conversation,
            Topics.CONVERSATION_DELETED: self.delete_conversation,
            Topics.MEMBER_ADDED: self.member_has_joined,
            Topics.CONVERSATION_UPDATED: self.update_conversation,
            Topics.TOPIC_UPDATED: self.topic_updated,
            Topics.MESSAGE_CREATED: self.on_message,
        }
        for topic, handler in handlers.items():
            self._subscriptions.append(await self._bus.topic(topic).subscribe(handler))

    async def stop(self) -> None:
        for sub in self._subscriptions:
            await sub.cancel()
        self._subscriptions.clear()

    def add_conversation(self, conversation: Dict[str, Any]) -> None:
        # channels are joined explicitly
        if conversation.get("type") == ConversationType.CONFIDENTIAL.value or ref_id(conversation.get("creator")) == self._user_id:
            self._store.add_conversation(conversation)

    def delete_conversation(self, conversation: Dict[str, Any]) -> None:
        self._store.delete_conversation(conversation)

    def member_has_joined(self, event: Dict[str, Any]) -> None:
        self._actions.update_members(event["conversation"], event.get("members_count"))

    def member_has_left(self, event: Dict[str, Any]) -> None:
        conversation = event["conversation"]
        self._actions.update_members(conversation, len(conversation.get("members") or []))

    def update_conversation(self, event: Dict[str, Any]) -> None:
        conversation = event["conversation"]
        left = [ref_id(m) for m in event.get("deleteMembers") or []]
        if self._user_id in left:
            self._store.delete_conversation(conversation)
            return
        if left:
            self.member_has_left(event)
        self._store.update_conversation(conversation)

    def topic_updated(self, message: Dict[str, Any]) -> None:
        self._store.update_topic(message["channel"], message["topic"])

    def on_message(self, message: Dict[str, Any]) -> None:
        conversation = self._store.find_conversation(message.get("channel"))
        if conversation is None:
            return

        cid = ref_id(conversation)
        self._actions.increase_number_of_unread_messages(cid)
        self._actions.update_user_mentions_count(cid, message.get("user_mentions"))
        conversation["last_message"] = {
            "text": render_mentions(message.get("text"), message.get("user_mentions"), skip_link=True),
            "date": (message.get("timestamps") or {}).get("creation"),
            "creator": message.get("creator"),
            "user_mentions": message.get("user_mentions"),
        }
        conversation["canScrollDown"] = True

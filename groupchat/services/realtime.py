import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from groupchat.constants import ConversationType, Topics
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.event_bus import EventBus
from groupchat.utils.websocket_manager import ConnectionManager

logger = logging.getLogger(__name__)


def _member_ids(conversation: Dict[str, Any]) -> List[str]:
    return [m["_id"] if isinstance(m, dict) else str(m) for m in conversation.get("members", [])]


class RealtimeNotifier:
    """Forwards bus events to the websockets of the users they concern.

    Channel events reach every connection, other events reach the
    conversation members.
    """

    def __init__(self, bus: EventBus, manager: ConnectionManager, service_factory: Callable[[], ConversationService]) -> None:
        self._bus = bus
        self._manager = manager
        self._service_factory = service_factory
        self._subscriptions: list = []
        self._tasks: List[asyncio.Task] = []

    async def start(self) -> None:
        for name in Topics.ALL:
            sub = await self._bus.topic(name).subscribe(self._handler(name))
            self._subscriptions.append(sub)
            self._tasks.append(asyncio.create_task(sub.run()))
        logger.info("Realtime notifier listening on %d topics", len(Topics.ALL))

    async def stop(self) -> None:
        for sub in self._subscriptions:
            await sub.cancel()
        for task in self._tasks:
            task.cancel()
        self._subscriptions.clear()
        self._tasks.clear()

    def _handler(self, topic: str):
        async def handle(payload: Any) -> None:
            recipients = await self.recipients(topic, payload)
            message = json.dumps({"type": topic, "data": payload})
            if recipients is None:
                await self._manager.send_to_users(self._manager.connected_users(), message)
            else:
                await self._manager.send_to_users(recipients, message)
        return handle

    async def recipients(self, topic: str, payload: Dict[str, Any]) -> Optional[List[str]]:
        """User ids to notify, or None for everybody connected."""
        if topic in (Topics.MESSAGE_CREATED, Topics.TOPIC_UPDATED):
            conversation = await self._service_factory().get_conversation(payload["channel"])
            if conversation is None:
                return []
        elif topic in (Topics.CONVERSATION_UPDATED, Topics.MEMBER_ADDED):
            conversation = payload["conversation"]
        else:
            conversation = payload

        if conversation.get("type") == ConversationType.CHANNEL.value:
            return None
        recipients = _member_ids(conversation)
        recipients.extend(m["_id"] for m in payload.get("deleteMembers") or [])
        return recipients

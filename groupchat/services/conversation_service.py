import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pymongo import ASCENDING, DESCENDING

from groupchat.config import Settings, settings
from groupchat.constants import (
    DEFAULT_CHANNEL_PURPOSE,
    MESSAGE_TYPE_TEXT,
    TOPIC_SUBTYPE,
    ConversationType,
    Topics,
)
from groupchat.exceptions import ConcurrentModificationError, ConfigurationError, NotFoundError, PersistenceError
from groupchat.repositories.conversation_repository import ConversationRepository
from groupchat.repositories.message_repository import MessageRepository
from groupchat.repositories.user_repository import UserRepository
from groupchat.services.mentions import parse_mentions
from groupchat.utils.clock import utcnow
from groupchat.utils.event_bus import EventBus

logger = logging.getLogger(__name__)

# distinguishes "no name filter" from "conversations without a name"
UNSET: Any = object()


def _as_list(value: Union[str, Iterable[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return list(value)


def _unique(values: Iterable[Any]) -> List[str]:
    result: List[str] = []
    for value in values:
        value = str(value)
        if value not in result:
            result.append(value)
    return result


def _membership_delta(modifications: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    # a user both added and deleted stays a member
    new_members = _unique(_as_list(modifications.get("new_members")))
    delete_members = [m for m in _unique(_as_list(modifications.get("delete_members"))) if m not in new_members]
    return new_members, delete_members


def _type_value(value: Any) -> str:
    try:
        return ConversationType(value).value
    except ValueError:
        raise ConfigurationError(f"Unknown conversation type: {value!r}") from None


class ConversationService:
    """Conversation lifecycle, membership, read tracking and message ingestion.

    Every mutation publishes a domain event on the injected bus once the store
    write has completed. Publication failures are logged, never raised.
    """

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        message_repo: MessageRepository,
        user_repo: UserRepository,
        bus: EventBus,
        config: Settings = settings,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._message_repo = message_repo
        self._user_repo = user_repo
        self._bus = bus
        self._config = config

    async def _publish(self, topic: str, payload: Any) -> None:
        try:
            await self._bus.topic(topic).publish(payload)
        except Exception:
            logger.exception("Could not publish on %s", topic)

    # population of user references

    async def _users_by_id(self, ids: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
        ids = _unique(i for i in ids if i)
        return {u["_id"]: u for u in await self._user_repo.get_summaries(ids)}

    async def _populate_conversations(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids: List[Any] = []
        for doc in docs:
            ids.extend(doc.get("members", []))
            ids.append(doc.get("creator"))
            last = doc.get("last_message") or {}
            ids.append(last.get("creator"))
            ids.extend(last.get("user_mentions", []))
        users = await self._users_by_id(ids)

        def ref(uid):
            return users.get(str(uid), {"_id": str(uid)}) if uid else uid

        populated = []
        for doc in docs:
            out = dict(doc)
            out["members"] = [ref(m) for m in doc.get("members", [])]
            out["creator"] = ref(doc.get("creator"))
            if doc.get("last_message"):
                last = dict(doc["last_message"])
                last["creator"] = ref(last.get("creator"))
                last["user_mentions"] = [ref(m) for m in last.get("user_mentions", [])]
                out["last_message"] = last
            populated.append(out)
        return populated

    async def _populate_conversation(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return (await self._populate_conversations([doc]))[0]

    async def _populate_messages(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ids: List[Any] = []
        for doc in docs:
            ids.append(doc.get("creator"))
            ids.extend(doc.get("user_mentions", []))
        users = await self._users_by_id(ids)
        populated = []
        for doc in docs:
            out = dict(doc)
            out["creator"] = users.get(str(doc.get("creator")), {"_id": doc.get("creator")})
            out["user_mentions"] = [users.get(m, {"_id": m}) for m in doc.get("user_mentions", [])]
            populated.append(out)
        return populated

    # conversations

    def _build_conversation(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        creator = spec.get("creator")
        doc: Dict[str, Any] = {
            "type": _type_value(spec.get("type") or ConversationType.CHANNEL),
            "name": spec.get("name"),
            "moderate": bool(spec.get("moderate", False)),
            "members": _unique(spec.get("members") or []),
            "creator": creator,
            "topic": dict({"value": "", "creator": creator, "last_set": now}, **(spec.get("topic") or {})),
            "purpose": dict({"value": "", "creator": creator, "last_set": now}, **(spec.get("purpose") or {})),
            "last_message": {"date": now, "user_mentions": []},
            "numOfMessage": 0,
            "numOfReadedMessage": {},
            "version": 0,
            "timestamps": {"creation": now},
        }
        for field in ("avatar", "community"):
            if spec.get(field) is not None:
                doc[field] = spec[field]
        return doc

    async def create_conversation(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        saved = await self._conversation_repo.create(self._build_conversation(spec))
        conversation = await self._populate_conversation(saved)
        logger.info("Conversation %s (%s) created", conversation["_id"], conversation["type"])
        await self._publish(Topics.CONVERSATION_CREATED, conversation)
        return conversation

    async def get_conversation(self, conversation_id) -> Optional[Dict[str, Any]]:
        doc = await self._conversation_repo.get(conversation_id)
        return await self._populate_conversation(doc) if doc else None

    async def get_community_conversation(self, community_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._conversation_repo.get_by_community(community_id)
        return await self._populate_conversation(doc) if doc else None

    async def find_conversation(
        self,
        *,
        type: Union[str, Iterable[str], None] = None,
        members: Optional[Iterable[str]] = None,
        exact_members_match: bool = False,
        ignore_member_filter_for_channel: bool = False,
        moderate: bool = False,
        name: Any = UNSET,
    ) -> List[Dict[str, Any]]:
        """Conversations matching every given filter, most recent activity first.

        ``members`` selects conversations containing at least those users, or
        exactly those users with ``exact_members_match``. ``name`` left unset
        accepts any name, ``None`` selects unnamed conversations. With
        ``ignore_member_filter_for_channel`` every channel is included too,
        unless ``type`` already excludes channels.
        """
        if exact_members_match and members is None:
            raise ConfigurationError("Could not set exact_members_match without providing members")
        if ignore_member_filter_for_channel and members is None:
            raise ConfigurationError("Could not set ignore_member_filter_for_channel without providing members")

        moderate = bool(moderate)
        request: Dict[str, Any] = {"moderate": moderate}

        if members is not None:
            members = _unique(members)
            request["members"] = {"$all": members}
            if exact_members_match:
                request["members"]["$size"] = len(members)

        types = None
        if type:
            types = [_type_value(t) for t in _as_list(type)]
            request["type"] = {"$in": types}

        if name is None:
            request["$or"] = [{"name": {"$exists": False}}, {"name": None}]
        elif name is not UNSET and name:
            request["name"] = name

        if ignore_member_filter_for_channel and (not types or ConversationType.CHANNEL.value in types):
            del request["moderate"]
            request = {"$or": [request, {"type": ConversationType.CHANNEL.value}], "moderate": moderate}

        docs = await self._conversation_repo.find(request, sort=[("last_message.date", DESCENDING)])
        return await self._populate_conversations(docs)

    async def list_conversations(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        creator: Optional[str] = None,
    ) -> Dict[str, Any]:
        limit = int(limit or self._config.DEFAULT_LIMIT)
        offset = int(offset or self._config.DEFAULT_OFFSET)
        query: Dict[str, Any] = {}
        if creator:
            query["creator"] = creator

        total = await self._conversation_repo.count(query)
        docs = await self._conversation_repo.find(
            query, sort=[("timestamps.creation", ASCENDING)], skip=offset, limit=limit
        )
        return {"total_count": total, "list": await self._populate_conversations(docs)}

    async def get_channels(self, moderate: bool = False) -> List[Dict[str, Any]]:
        """Channels with the given moderation state.

        When none match, the published default channel is created if needed and
        returned, so there is always at least one channel.
        """
        query = {"type": ConversationType.CHANNEL.value, "moderate": bool(moderate)}
        channels = await self._conversation_repo.find(query)
        if channels:
            return await self._populate_conversations(channels)

        name = self._config.DEFAULT_CHANNEL_NAME
        defaults = self._build_conversation({
            "type": ConversationType.CHANNEL,
            "name": name,
            "topic": {"value": name},
            "purpose": {"value": DEFAULT_CHANNEL_PURPOSE},
        })
        doc, created = await self._conversation_repo.ensure_channel(name, defaults)
        channel = await self._populate_conversation(doc)
        if created:
            logger.info("Default channel %s created", channel["_id"])
            await self._publish(Topics.CONVERSATION_CREATED, channel)
        return [channel]

    async def _update_membership(
        self,
        load: Callable[[], Awaitable[Optional[Dict[str, Any]]]],
        new_members: Iterable[str],
        delete_members: Iterable[str],
        set_fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        # one guarded write per attempt, so readers never see half of the delta
        new_members = _unique(new_members)
        delete_members = [m for m in _unique(delete_members) if m not in new_members]

        for _ in range(max(1, self._config.MEMBERSHIP_UPDATE_RETRIES)):
            current = await load()
            if current is None:
                raise NotFoundError("Conversation not found")

            members = [m for m in current.get("members", []) if m not in delete_members]
            members.extend(m for m in new_members if m not in members)

            update: Dict[str, Any] = {"$set": dict(set_fields, members=members)}
            if new_members:
                count = current.get("numOfMessage", 0)
                update["$max"] = {f"numOfReadedMessage.{uid}": count for uid in new_members}
            if delete_members:
                update["$unset"] = {f"numOfReadedMessage.{uid}": "" for uid in delete_members}

            updated = await self._conversation_repo.update_if_version(current["_id"], current.get("version"), update)
            if updated is not None:
                return updated
            logger.info("Conversation %s modified concurrently, retrying membership update", current["_id"])

        raise ConcurrentModificationError("Conversation membership kept changing, giving up")

    async def update_conversation(self, conversation_id, modifications: Dict[str, Any]) -> Dict[str, Any]:
        """Apply ``new_members``, ``delete_members``, ``name`` and ``avatar`` at once."""
        set_fields: Dict[str, Any] = {}
        if modifications.get("name"):
            set_fields["name"] = modifications["name"]
        if modifications.get("avatar"):
            set_fields["avatar"] = modifications["avatar"]
        new_members, delete_members = _membership_delta(modifications)

        updated = await self._update_membership(
            lambda: self._conversation_repo.get(conversation_id),
            new_members,
            delete_members,
            set_fields,
        )
        conversation = await self._populate_conversation(updated)
        await self._publish(Topics.CONVERSATION_UPDATED, {
            "conversation": conversation,
            "deleteMembers": [{"_id": uid} for uid in delete_members],
        })
        return conversation

    async def update_community_conversation(self, community_id: str, modifications: Dict[str, Any]) -> Dict[str, Any]:
        set_fields: Dict[str, Any] = {}
        if modifications.get("title"):
            set_fields["name"] = modifications["title"]
        new_members, delete_members = _membership_delta(modifications)

        updated = await self._update_membership(
            lambda: self._conversation_repo.get_by_community(community_id),
            new_members,
            delete_members,
            set_fields,
        )
        conversation = await self._populate_conversation(updated)
        await self._publish(Topics.CONVERSATION_UPDATED, {
            "conversation": conversation,
            "deleteMembers": [{"_id": uid} for uid in delete_members],
        })
        return conversation

    async def add_member_to_conversation(self, conversation_id, user_id: str) -> Dict[str, Any]:
        updated = await self._update_membership(
            lambda: self._conversation_repo.get(conversation_id), [user_id], [], {}
        )
        conversation = await self._populate_conversation(updated)
        await self._publish(Topics.MEMBER_ADDED, {
            "conversation": conversation,
            "members_count": len(conversation["members"]),
        })
        return conversation

    async def remove_member_from_conversation(self, conversation_id, user_id: str) -> Dict[str, Any]:
        updated = await self._conversation_repo.remove_member(conversation_id, str(user_id))
        if updated is None:
            raise NotFoundError("Conversation not found")
        conversation = await self._populate_conversation(updated)
        await self._publish(Topics.CONVERSATION_UPDATED, {
            "conversation": conversation,
            "deleteMembers": [{"_id": str(user_id)}],
        })
        return conversation

    async def delete_conversation(self, user_id: str, conversation_id) -> Optional[Dict[str, Any]]:
        """Delete the conversation and its messages if ``user_id`` is a member.

        Returns None when nothing was deleted: unknown conversation, user not
        a member, or already deleted.
        """
        deleted = await self._conversation_repo.delete_for_member(conversation_id, str(user_id))
        if deleted is None:
            return None
        removed = await self._message_repo.delete_for_conversation(deleted["_id"])
        logger.info("Conversation %s deleted by %s with %d messages", deleted["_id"], user_id, removed)
        await self._publish(Topics.CONVERSATION_DELETED, deleted)
        return deleted

    async def update_topic(self, conversation_id, topic: Dict[str, Any]) -> Dict[str, Any]:
        updated = await self._conversation_repo.set_topic(conversation_id, {
            "value": topic.get("value", ""),
            "creator": topic.get("creator"),
            "last_set": topic.get("last_set") or utcnow(),
        })
        if updated is None:
            raise NotFoundError("Conversation not found")

        committed = updated["topic"]
        await self._publish(Topics.TOPIC_UPDATED, {
            "type": MESSAGE_TYPE_TEXT,
            "subtype": TOPIC_SUBTYPE,
            "date": utcnow(),
            "channel": updated["_id"],
            "user": str(committed.get("creator")),
            "topic": {
                "value": committed.get("value"),
                "creator": str(committed.get("creator")),
                "last_set": committed.get("last_set"),
            },
            "text": f"set the channel topic: {committed.get('value')}",
        })
        return await self._populate_conversation(updated)

    async def mark_all_messages_as_read(self, user_ids: Union[str, Iterable[str]], conversation_id) -> Dict[str, Any]:
        current = await self._conversation_repo.get(conversation_id)
        if current is None:
            raise NotFoundError("Conversation not found")
        updated = await self._conversation_repo.raise_read_counters(
            current["_id"], _as_list(user_ids), current.get("numOfMessage", 0)
        )
        if updated is None:
            raise NotFoundError("Conversation not found")
        return updated

    async def moderate_conversation(self, conversation_id, moderate: bool) -> Optional[Dict[str, Any]]:
        return await self._conversation_repo.set_moderate(conversation_id, bool(moderate))

    # messages

    async def create_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        text = message.get("text") or ""
        saved = await self._message_repo.create({
            "channel": message["channel"],
            "creator": str(message["creator"]),
            "type": message.get("type") or MESSAGE_TYPE_TEXT,
            "text": text,
            "user_mentions": parse_mentions(text),
            "moderate": bool(message.get("moderate", False)),
            "timestamps": {"creation": utcnow()},
        })

        conversation = None
        try:
            conversation = await self._conversation_repo.update_on_new_message(saved["channel"], {
                "text": saved["text"],
                "date": saved["timestamps"]["creation"],
                "creator": saved["creator"],
                "user_mentions": saved["user_mentions"],
            })
        except PersistenceError:
            logger.exception("Can not update conversation %s with its last message", saved["channel"])

        if conversation is not None:
            await self._conversation_repo.raise_read_counters(
                conversation["_id"], [saved["creator"]], conversation["numOfMessage"]
            )
        else:
            logger.warning("Message %s stored without conversation summary update", saved["_id"])

        populated = (await self._populate_messages([saved]))[0]
        await self._publish(Topics.MESSAGE_CREATED, populated)
        return populated

    async def get_message(self, message_id) -> Optional[Dict[str, Any]]:
        doc = await self._message_repo.get(message_id)
        return (await self._populate_messages([doc]))[0] if doc else None

    async def get_messages(
        self,
        conversation_id,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        moderate: bool = False,
    ) -> List[Dict[str, Any]]:
        """A page of messages, newest page first, in chronological order."""
        docs = await self._message_repo.get_messages_by_conversation(
            conversation_id,
            limit=int(limit or self._config.MESSAGES_DEFAULT_LIMIT),
            offset=int(offset or 0),
            include_moderated=bool(moderate),
        )
        return await self._populate_messages(docs)

    async def list_messages(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        creator: Optional[str] = None,
    ) -> Dict[str, Any]:
        limit = int(limit or self._config.DEFAULT_LIMIT)
        offset = int(offset or self._config.DEFAULT_OFFSET)
        query: Dict[str, Any] = {}
        if creator:
            query["creator"] = creator

        total = await self._message_repo.count(query)
        docs = await self._message_repo.find(
            query, sort=[("timestamps.creation", ASCENDING)], skip=offset, limit=limit
        )
        return {"total_count": total, "list": await self._populate_messages(docs)}

    async def count_messages(self, conversation_id) -> int:
        return await self._message_repo.count_for_conversation(conversation_id)

    async def moderate_message(self, message_id, moderate: bool) -> Optional[Dict[str, Any]]:
        return await self._message_repo.set_moderate(message_id, bool(moderate))

"""
Tests for ConversationService conversation operations.

These tests verify:
- Conversation creation and population of user references
- find_conversation filters and option validation
- Lazy default channel
- Membership updates, read counters and their events
- Deletion restricted to members
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId

from groupchat.config import settings
from groupchat.constants import ConversationType, Topics
from groupchat.exceptions import ConcurrentModificationError, ConfigurationError, NotFoundError
from groupchat.repositories.user_repository import UserRepository
from groupchat.services.conversation_service import ConversationService
from groupchat.utils.event_bus import EventBus
from tests.helpers import member_ids, topics_of


async def _private(service, creator, *others, **extra):
    return await service.create_conversation(
        dict({"type": ConversationType.CONFIDENTIAL, "creator": creator, "members": [creator, *others]}, **extra)
    )


async def _post(service, conversation, creator, text="hello"):
    return await service.create_message({"channel": conversation["_id"], "creator": creator, "text": text})


class TestCreateConversation:

    async def test_seeds_counters_and_summary(self, service, users):
        conversation = await _private(service, users["alice"], users["bob"])

        assert conversation["numOfMessage"] == 0
        assert conversation["numOfReadedMessage"] == {}
        assert conversation["last_message"]["user_mentions"] == []
        assert conversation["last_message"]["date"] is not None
        assert conversation["type"] == "confidential"
        assert conversation["moderate"] is False

    async def test_populates_members_without_private_fields(self, service, users):
        conversation = await _private(service, users["alice"], users["bob"])

        assert [m["full_name"] for m in conversation["members"]] == ["Alice Martin", "Bob Durand"]
        assert all("hashed_password" not in m for m in conversation["members"])
        assert conversation["creator"]["_id"] == users["alice"]

    async def test_unknown_member_is_kept_as_bare_reference(self, service, users):
        conversation = await _private(service, users["alice"], "not-registered")

        assert conversation["members"][1] == {"_id": "not-registered"}

    async def test_duplicate_members_are_collapsed(self, service, users):
        conversation = await _private(service, users["alice"], users["bob"], users["bob"])

        assert member_ids(conversation) == sorted([users["alice"], users["bob"]])

    async def test_publishes_created_event(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])

        assert topics_of(events) == [Topics.CONVERSATION_CREATED]
        assert events[0][1]["_id"] == conversation["_id"]
        assert events[0][1]["members"][0]["_id"] == users["alice"]

    async def test_publish_failure_does_not_fail_the_operation(self, conversation_repo, message_repo, db, users):
        class BrokenBus(EventBus):
            async def publish(self, channel, payload):
                raise RuntimeError("bus down")

        service = ConversationService(conversation_repo, message_repo, UserRepository(db), BrokenBus())

        conversation = await _private(service, users["alice"])

        assert await conversation_repo.get(conversation["_id"]) is not None


class TestFindConversation:

    @pytest.fixture
    async def conversations(self, service, users):
        a, b, c = users["alice"], users["bob"], users["carol"]
        pair = await _private(service, a, b)
        trio = await _private(service, a, b, c)
        channel = await service.create_conversation({"type": ConversationType.CHANNEL, "creator": c, "members": [c], "name": "random"})
        return {"pair": pair, "trio": trio, "channel": channel}

    async def test_members_filter_matches_supersets(self, service, users, conversations):
        found = await service.find_conversation(members=[users["alice"], users["bob"]])

        assert {c["_id"] for c in found} == {conversations["pair"]["_id"], conversations["trio"]["_id"]}

    async def test_exact_members_match(self, service, users, conversations):
        found = await service.find_conversation(members=[users["bob"], users["alice"]], exact_members_match=True)

        assert [c["_id"] for c in found] == [conversations["pair"]["_id"]]

    async def test_exact_members_match_requires_members(self):
        conversation_repo = MagicMock()
        service = ConversationService(conversation_repo, MagicMock(), MagicMock(), MagicMock())

        with pytest.raises(ConfigurationError):
            await service.find_conversation(exact_members_match=True)
        conversation_repo.find.assert_not_called()

    async def test_ignore_member_filter_for_channel_requires_members(self, service):
        with pytest.raises(ConfigurationError):
            await service.find_conversation(ignore_member_filter_for_channel=True)

    async def test_unknown_type_is_rejected_before_querying(self):
        conversation_repo = MagicMock()
        service = ConversationService(conversation_repo, MagicMock(), MagicMock(), MagicMock())

        with pytest.raises(ConfigurationError):
            await service.find_conversation(type="bogus")
        conversation_repo.find.assert_not_called()

    async def test_channels_are_visible_to_non_members(self, service, users, conversations):
        found = await service.find_conversation(members=[users["alice"]], ignore_member_filter_for_channel=True)

        assert {c["_id"] for c in found} == {c["_id"] for c in conversations.values()}

    async def test_type_filter_can_exclude_channels(self, service, users, conversations):
        found = await service.find_conversation(
            members=[users["alice"]], type=[ConversationType.CONFIDENTIAL], ignore_member_filter_for_channel=True
        )

        assert conversations["channel"]["_id"] not in {c["_id"] for c in found}
        assert len(found) == 2

    async def test_name_filters(self, service, users, conversations):
        named = await _private(service, users["alice"], users["bob"], name="Project")

        unnamed = await service.find_conversation(members=[users["alice"]], name=None)
        by_name = await service.find_conversation(members=[users["alice"]], name="Project")

        assert named["_id"] not in {c["_id"] for c in unnamed}
        assert len(unnamed) == 2
        assert [c["_id"] for c in by_name] == [named["_id"]]

    async def test_sorted_by_last_message_date(self, service, users, conversations, db):
        await _post(service, conversations["trio"], users["alice"])
        await _post(service, conversations["pair"], users["bob"], "latest")
        await db["conversations"].update_one(
            {"_id": ObjectId(conversations["trio"]["_id"])}, {"$set": {"last_message.date": datetime(2000, 1, 1, tzinfo=timezone.utc)}}
        )

        found = await service.find_conversation(members=[users["alice"]])

        assert [c["_id"] for c in found] == [conversations["pair"]["_id"], conversations["trio"]["_id"]]
        assert found[0]["last_message"]["creator"]["full_name"] == "Bob Durand"

    async def test_moderated_conversations_are_hidden_by_default(self, service, users, conversations):
        await service.moderate_conversation(conversations["pair"]["_id"], True)

        visible = await service.find_conversation(members=[users["alice"]])
        moderated = await service.find_conversation(members=[users["alice"]], moderate=True)

        assert [c["_id"] for c in visible] == [conversations["trio"]["_id"]]
        assert [c["_id"] for c in moderated] == [conversations["pair"]["_id"]]


class TestListConversations:

    async def test_paginates_and_counts(self, service, users):
        for _ in range(3):
            await _private(service, users["alice"])
        await _private(service, users["bob"])

        page = await service.list_conversations(limit=2)
        rest = await service.list_conversations(limit=2, offset=2)

        assert page["total_count"] == 4
        assert len(page["list"]) == 2
        assert len(rest["list"]) == 2
        assert {c["_id"] for c in page["list"]}.isdisjoint({c["_id"] for c in rest["list"]})

    async def test_filters_by_creator(self, service, users):
        await _private(service, users["alice"])
        await _private(service, users["bob"])

        result = await service.list_conversations(creator=users["bob"])

        assert result["total_count"] == 1
        assert result["list"][0]["creator"]["_id"] == users["bob"]


class TestGetChannels:

    async def test_creates_default_channel_once(self, service, db, events):
        first = await service.get_channels(moderate=False)
        second = await service.get_channels(moderate=False)

        assert len(first) == 1
        assert first[0]["name"] == settings.DEFAULT_CHANNEL_NAME
        assert first[0]["type"] == ConversationType.CHANNEL.value
        assert [c["_id"] for c in second] == [first[0]["_id"]]
        assert await db["conversations"].count_documents({"type": "open"}) == 1
        assert topics_of(events) == [Topics.CONVERSATION_CREATED]

    async def test_existing_channels_are_returned(self, service, users):
        channel = await service.create_conversation({"type": ConversationType.CHANNEL, "creator": users["alice"], "name": "dev"})

        channels = await service.get_channels()

        assert [c["_id"] for c in channels] == [channel["_id"]]

    async def test_moderated_listing_falls_back_to_default_channel(self, service, db):
        moderated = await service.get_channels(moderate=True)
        published = await service.get_channels()

        assert [c["name"] for c in moderated] == [settings.DEFAULT_CHANNEL_NAME]
        assert [c["_id"] for c in published] == [moderated[0]["_id"]]
        assert await db["conversations"].count_documents({}) == 1


class TestReadCounters:

    async def test_mark_all_messages_as_read(self, service, users):
        conversation = await _private(service, users["alice"], users["bob"])
        for _ in range(3):
            await _post(service, conversation, users["alice"])

        updated = await service.mark_all_messages_as_read(users["bob"], conversation["_id"])

        assert updated["numOfReadedMessage"][users["bob"]] == 3

    async def test_read_counter_never_decreases(self, service, users, db):
        conversation = await _private(service, users["alice"], users["bob"])
        await _post(service, conversation, users["alice"])
        await db["conversations"].update_one(
            {"_id": ObjectId(conversation["_id"])}, {"$set": {f"numOfReadedMessage.{users['bob']}": 7}}
        )

        updated = await service.mark_all_messages_as_read(users["bob"], conversation["_id"])

        assert updated["numOfReadedMessage"][users["bob"]] == 7

    async def test_marks_several_users_at_once(self, service, users):
        conversation = await _private(service, users["alice"], users["bob"], users["carol"])
        await _post(service, conversation, users["alice"])
        await _post(service, conversation, users["alice"])

        updated = await service.mark_all_messages_as_read([users["bob"], users["carol"]], conversation["_id"])

        assert updated["numOfReadedMessage"][users["bob"]] == 2
        assert updated["numOfReadedMessage"][users["carol"]] == 2

    async def test_unknown_conversation(self, service, users):
        with pytest.raises(NotFoundError):
            await service.mark_all_messages_as_read(users["bob"], str(ObjectId()))

    async def test_query_operator_as_conversation_id_is_rejected(self, service, users, db):
        conversation = await _private(service, users["alice"])
        await _post(service, conversation, users["alice"])

        with pytest.raises(ConfigurationError):
            await service.mark_all_messages_as_read(users["bob"], {"$ne": None})

        stored = await db["conversations"].find_one({"_id": ObjectId(conversation["_id"])})
        assert users["bob"] not in stored["numOfReadedMessage"]


class TestUpdateConversation:

    async def test_adds_and_removes_members_in_one_write(self, service, users, conversation_repo):
        a, b, c = users["alice"], users["bob"], users["carol"]
        conversation = await _private(service, a, b)
        await _post(service, conversation, a)
        await _post(service, conversation, a)
        version = (await conversation_repo.get(conversation["_id"]))["version"]

        updated = await service.update_conversation(conversation["_id"], {"new_members": [c], "delete_members": [b]})

        assert member_ids(updated) == sorted([a, c])
        assert updated["numOfReadedMessage"][c] == updated["numOfMessage"] == 2
        assert updated["version"] == version + 1

    async def test_publishes_update_with_removed_members(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])

        await service.update_conversation(conversation["_id"], {"delete_members": [users["bob"]], "name": "Renamed"})

        name, payload = events[-1]
        assert name == Topics.CONVERSATION_UPDATED
        assert payload["deleteMembers"] == [{"_id": users["bob"]}]
        assert payload["conversation"]["name"] == "Renamed"

    async def test_member_both_added_and_deleted_stays_and_is_not_announced_as_removed(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])

        updated = await service.update_conversation(conversation["_id"], {
            "new_members": [users["bob"]],
            "delete_members": [users["bob"]],
        })

        assert member_ids(updated) == sorted([users["alice"], users["bob"]])
        assert events[-1][1]["deleteMembers"] == []

    async def test_sets_name_and_avatar(self, service, users):
        conversation = await _private(service, users["alice"])

        updated = await service.update_conversation(conversation["_id"], {"name": "Ops", "avatar": "avatar-id"})

        assert updated["name"] == "Ops"
        assert updated["avatar"] == "avatar-id"

    async def test_unknown_conversation(self, service):
        with pytest.raises(NotFoundError):
            await service.update_conversation(str(ObjectId()), {"new_members": ["x"]})

    async def test_retries_when_a_message_lands_between_read_and_write(self, service, users, conversation_repo, monkeypatch):
        a, c = users["alice"], users["carol"]
        conversation = await _private(service, a)
        real_update = conversation_repo.update_if_version
        attempts = []

        async def racing(conversation_id, version, update):
            attempts.append(version)
            if len(attempts) == 1:
                await _post(service, conversation, a, "concurrent")
            return await real_update(conversation_id, version, update)

        monkeypatch.setattr(conversation_repo, "update_if_version", racing)

        updated = await service.update_conversation(conversation["_id"], {"new_members": [c]})

        assert len(attempts) == 2
        assert updated["numOfMessage"] == 1
        assert updated["numOfReadedMessage"][c] == 1

    async def test_gives_up_after_configured_retries(self, service, users, conversation_repo, monkeypatch):
        conversation = await _private(service, users["alice"])
        always_stale = AsyncMock(return_value=None)
        monkeypatch.setattr(conversation_repo, "update_if_version", always_stale)

        with pytest.raises(ConcurrentModificationError):
            await service.update_conversation(conversation["_id"], {"new_members": [users["bob"]]})
        assert always_stale.await_count == settings.MEMBERSHIP_UPDATE_RETRIES


class TestCommunityConversation:

    async def test_update_by_community_id(self, service, users):
        await service.create_conversation({
            "type": ConversationType.COMMUNITY,
            "community": "community-1",
            "creator": users["alice"],
            "members": [users["alice"], users["carol"]],
        })

        updated = await service.update_community_conversation(
            "community-1", {"new_members": [users["bob"]], "delete_members": [users["carol"]], "title": "Neighbours"}
        )
        fetched = await service.get_community_conversation("community-1")

        assert updated["name"] == "Neighbours"
        assert member_ids(fetched) == sorted([users["alice"], users["bob"]])

    async def test_unknown_community(self, service):
        with pytest.raises(NotFoundError):
            await service.update_community_conversation("nope", {"new_members": ["x"]})


class TestMembers:

    async def test_add_member_is_idempotent(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])
        await _post(service, conversation, users["alice"])

        await service.add_member_to_conversation(conversation["_id"], users["carol"])
        updated = await service.add_member_to_conversation(conversation["_id"], users["carol"])

        assert member_ids(updated) == sorted(users.values())
        assert updated["numOfReadedMessage"][users["carol"]] == 1
        name, payload = events[-1]
        assert name == Topics.MEMBER_ADDED
        assert payload["members_count"] == 3

    async def test_remove_member_clears_read_counter(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])
        await _post(service, conversation, users["alice"])
        await service.mark_all_messages_as_read(users["bob"], conversation["_id"])

        updated = await service.remove_member_from_conversation(conversation["_id"], users["bob"])

        assert member_ids(updated) == [users["alice"]]
        assert users["bob"] not in updated["numOfReadedMessage"]
        name, payload = events[-1]
        assert name == Topics.CONVERSATION_UPDATED
        assert payload["deleteMembers"] == [{"_id": users["bob"]}]

    async def test_remove_member_from_unknown_conversation(self, service, users):
        with pytest.raises(NotFoundError):
            await service.remove_member_from_conversation(str(ObjectId()), users["bob"])


class TestDeleteConversation:

    async def test_member_deletes_conversation_and_messages(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])
        await _post(service, conversation, users["alice"])

        deleted = await service.delete_conversation(users["bob"], conversation["_id"])

        assert deleted["_id"] == conversation["_id"]
        assert await service.get_conversation(conversation["_id"]) is None
        assert await service.count_messages(conversation["_id"]) == 0
        assert topics_of(events)[-1] == Topics.CONVERSATION_DELETED

    async def test_non_member_delete_is_a_no_op(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])
        await _post(service, conversation, users["alice"])

        result = await service.delete_conversation(users["carol"], conversation["_id"])

        assert result is None
        assert await service.get_conversation(conversation["_id"]) is not None
        assert await service.count_messages(conversation["_id"]) == 1
        assert Topics.CONVERSATION_DELETED not in topics_of(events)

    async def test_unknown_conversation_is_a_no_op(self, service, users):
        assert await service.delete_conversation(users["alice"], str(ObjectId())) is None


class TestUpdateTopic:

    async def test_publishes_topic_message_from_stored_value(self, service, users, events):
        conversation = await _private(service, users["alice"], users["bob"])

        updated = await service.update_topic(conversation["_id"], {"value": "Roadmap", "creator": users["bob"]})

        assert updated["topic"]["value"] == "Roadmap"
        name, message = events[-1]
        assert name == Topics.TOPIC_UPDATED
        assert message["subtype"] == "channel:topic"
        assert message["channel"] == conversation["_id"]
        assert message["user"] == users["bob"]
        assert message["topic"]["value"] == "Roadmap"
        assert message["text"] == "set the channel topic: Roadmap"

    async def test_unknown_conversation(self, service, users):
        with pytest.raises(NotFoundError):
            await service.update_topic(str(ObjectId()), {"value": "x", "creator": users["bob"]})

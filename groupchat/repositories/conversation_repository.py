from typing import Any, Dict, Iterable, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from groupchat.constants import ConversationType
from groupchat.models.conversation import ConversationDocument
from groupchat.repositories.base import normalize, store_operation, to_object_id


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("members", ASCENDING)])
        await self.collection.create_index([("type", ASCENDING), ("moderate", ASCENDING)])
        await self.collection.create_index([("last_message.date", DESCENDING)])
        await self.collection.create_index([("community", ASCENDING)], sparse=True)

    @store_operation
    async def create(self, doc: ConversationDocument) -> ConversationDocument:
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @store_operation
    async def get(self, conversation_id) -> Optional[ConversationDocument]:
        return normalize(await self.collection.find_one({"_id": to_object_id(conversation_id)}))

    @store_operation
    async def get_by_community(self, community_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"type": ConversationType.COMMUNITY.value, "community": community_id})
        return normalize(doc)

    @store_operation
    async def find(
        self,
        query: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[ConversationDocument]:
        cur = self.collection.find(query)
        if sort:
            cur = cur.sort(sort)
        if skip:
            cur = cur.skip(skip)
        if limit > 0:
            cur = cur.limit(limit)
        items = await cur.to_list(length=None)
        return [normalize(it) for it in items]

    @store_operation
    async def count(self, query: Dict[str, Any]) -> int:
        return await self.collection.count_documents(query)

    @store_operation
    async def ensure_channel(self, name: str, defaults: Dict[str, Any]) -> Tuple[ConversationDocument, bool]:
        """Insert the named published channel unless it already exists.

        Returns the channel and whether this call created it.
        """
        query = {"type": ConversationType.CHANNEL.value, "name": name, "moderate": False}
        on_insert = {k: v for k, v in defaults.items() if k not in query}
        result = await self.collection.update_one(query, {"$setOnInsert": on_insert}, upsert=True)
        doc = normalize(await self.collection.find_one(query))
        return doc, result.upserted_id is not None

    @store_operation
    async def update_on_new_message(self, conversation_id, last_message: Dict[str, Any]) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {
                "$set": {"last_message": last_message},
                "$inc": {"numOfMessage": 1, "version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def raise_read_counters(self, conversation_id, user_ids: Iterable[str], count: int) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {"$max": {f"numOfReadedMessage.{uid}": count for uid in user_ids}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def update_if_version(self, conversation_id, version: Optional[int], update: Dict[str, Any]) -> Optional[ConversationDocument]:
        """Apply ``update`` only if nobody wrote the document since ``version`` was read.

        Returns the updated document, or None when the version moved on.
        """
        update = dict(update)
        update["$inc"] = dict(update.get("$inc", {}), version=1)
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id), "version": version},
            update,
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def remove_member(self, conversation_id, user_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {
                "$pull": {"members": user_id},
                "$unset": {f"numOfReadedMessage.{user_id}": ""},
                "$inc": {"version": 1},
            },
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def set_topic(self, conversation_id, topic: Dict[str, Any]) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {"$set": {"topic": topic}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def set_moderate(self, conversation_id, moderate: bool) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(conversation_id)},
            {"$set": {"moderate": moderate}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc)

    @store_operation
    async def delete_for_member(self, conversation_id, user_id: str) -> Optional[ConversationDocument]:
        # the member filter is the authorization check
        doc = await self.collection.find_one_and_delete({"_id": to_object_id(conversation_id), "members": user_id})
        return normalize(doc)

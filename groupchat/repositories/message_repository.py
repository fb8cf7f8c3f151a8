from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from groupchat.models.message import MessageDocument
from groupchat.repositories.base import normalize, store_operation, to_object_id


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("channel", ASCENDING), ("timestamps.creation", DESCENDING)])
        await self.collection.create_index([("creator", ASCENDING)])

    @store_operation
    async def create(self, doc: Dict[str, Any]) -> MessageDocument:
        doc = dict(doc, channel=to_object_id(doc["channel"]))
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return normalize(doc, "channel")

    @store_operation
    async def get(self, message_id) -> Optional[MessageDocument]:
        doc = await self.collection.find_one({"_id": to_object_id(message_id)})
        return normalize(doc, "channel")

    @store_operation
    async def get_messages_by_conversation(
        self,
        conversation_id,
        limit: int = 20,
        offset: int = 0,
        include_moderated: bool = False,
    ) -> List[MessageDocument]:
        query: Dict[str, Any] = {"channel": to_object_id(conversation_id)}
        if not include_moderated:
            query["moderate"] = False
        sort = [("timestamps.creation", DESCENDING), ("_id", DESCENDING)]
        cur = self.collection.find(query).sort(sort).skip(offset).limit(limit)
        items = await cur.to_list(length=limit)
        # newest page first, returned in chronological order
        return [normalize(it, "channel") for it in reversed(items)]

    @store_operation
    async def find(
        self,
        query: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[MessageDocument]:
        cur = self.collection.find(query)
        if sort:
            cur = cur.sort(sort)
        if skip:
            cur = cur.skip(skip)
        if limit > 0:
            cur = cur.limit(limit)
        items = await cur.to_list(length=None)
        return [normalize(it, "channel") for it in items]

    @store_operation
    async def count(self, query: Dict[str, Any]) -> int:
        return await self.collection.count_documents(query)

    @store_operation
    async def count_for_conversation(self, conversation_id) -> int:
        return await self.collection.count_documents({"channel": to_object_id(conversation_id)})

    @store_operation
    async def set_moderate(self, message_id, moderate: bool) -> Optional[MessageDocument]:
        doc = await self.collection.find_one_and_update(
            {"_id": to_object_id(message_id)},
            {"$set": {"moderate": moderate}},
            return_document=ReturnDocument.AFTER,
        )
        return normalize(doc, "channel")

    @store_operation
    async def delete_for_conversation(self, conversation_id) -> int:
        result = await self.collection.delete_many({"channel": to_object_id(conversation_id)})
        return result.deleted_count or 0

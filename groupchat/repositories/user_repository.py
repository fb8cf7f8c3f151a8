from typing import Any, Dict, Iterable, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from groupchat.constants import USER_PUBLIC_FIELDS
from groupchat.models.user import UserSummary
from groupchat.repositories.base import store_operation, to_object_id


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @store_operation
    async def get_summaries(self, user_ids: Iterable[Any]) -> List[UserSummary]:
        """Public fields of each user, in the order of ``user_ids``.

        Unknown users come back as ``{"_id": user_id}``.
        """
        ids = [str(uid) for uid in user_ids]
        if not ids:
            return []
        lookup = list({to_object_id(uid) for uid in ids} | set(ids))
        cursor = self._collection.find({"_id": {"$in": lookup}}, USER_PUBLIC_FIELDS)
        found: Dict[str, Dict[str, Any]] = {}
        async for doc in cursor:
            doc["_id"] = str(doc["_id"])
            found[doc["_id"]] = doc
        return [found.get(uid, {"_id": uid}) for uid in ids]

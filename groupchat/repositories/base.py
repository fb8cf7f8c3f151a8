import functools
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

from groupchat.exceptions import ConfigurationError, PersistenceError


def to_object_id(value: Any) -> Any:
    # strings that are not valid ObjectIds are kept as-is so they match nothing
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str):
        raise ConfigurationError(f"Invalid id: {value!r}")
    return ObjectId(value) if ObjectId.is_valid(value) else value


def normalize(doc: Optional[Dict[str, Any]], *fields: str) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    for field in ("_id",) + fields:
        if isinstance(doc.get(field), ObjectId):
            doc[field] = str(doc[field])
    return doc


def store_operation(func):
    """Turn driver failures into PersistenceError, keeping the driver error as cause."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as exc:
            raise PersistenceError(f"{func.__qualname__} failed: {exc}") from exc

    return wrapper

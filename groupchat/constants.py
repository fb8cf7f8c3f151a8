from enum import Enum


class ConversationType(str, Enum):

    CHANNEL = "open"
    CONFIDENTIAL = "confidential"
    COMMUNITY = "community"


class Topics:

    CONVERSATION_CREATED = "chat:conversation:created"
    CONVERSATION_UPDATED = "chat:conversation:updated"
    CONVERSATION_DELETED = "chat:conversation:deleted"
    MEMBER_ADDED = "chat:conversation:member_added"
    TOPIC_UPDATED = "chat:conversation:topic_updated"
    MESSAGE_CREATED = "chat:message:created"

    ALL = (
        CONVERSATION_CREATED,
        CONVERSATION_UPDATED,
        CONVERSATION_DELETED,
        MEMBER_ADDED,
        TOPIC_UPDATED,
        MESSAGE_CREATED,
    )


MESSAGE_TYPE_TEXT = "text"
TOPIC_SUBTYPE = "channel:topic"

# user fields exposed when a reference is populated
USER_PUBLIC_FIELDS = {"_id": 1, "email": 1, "full_name": 1}

DEFAULT_CHANNEL_PURPOSE = "Talk about everything"

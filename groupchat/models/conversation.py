from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class TopicDocument(TypedDict, total=False):
    value: str
    creator: str
    last_set: datetime


class LastMessageDocument(TypedDict, total=False):
    text: str
    date: datetime
    creator: str
    user_mentions: List[str]


class ConversationDocument(TypedDict, total=False):
    _id: str
    # "open" | "confidential" | "community"
    type: str
    name: Optional[str]
    moderate: bool
    members: List[str]
    creator: str
    topic: TopicDocument
    purpose: TopicDocument
    avatar: Optional[str]
    community: Optional[str]
    last_message: LastMessageDocument
    numOfMessage: int
    # per-user read high-water mark (user_id -> message count)
    numOfReadedMessage: Dict[str, int]
    # optimistic concurrency token
    version: int
    timestamps: Dict[str, datetime]

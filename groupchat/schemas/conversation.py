from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from groupchat.constants import ConversationType


class TopicIn(BaseModel):

    value: str = ""
    last_set: Optional[datetime] = None


class ConversationCreate(BaseModel):

    type: ConversationType = ConversationType.CHANNEL
    name: Optional[str] = None
    moderate: bool = False
    members: List[str] = Field(default_factory=list)
    topic: Optional[TopicIn] = None
    purpose: Optional[TopicIn] = None
    avatar: Optional[str] = None
    community: Optional[str] = None


class ConversationModifications(BaseModel):

    new_members: List[str] = Field(default_factory=list)
    delete_members: List[str] = Field(default_factory=list)
    name: Optional[str] = None
    avatar: Optional[str] = None


class CommunityConversationModifications(BaseModel):

    new_members: List[str] = Field(default_factory=list)
    delete_members: List[str] = Field(default_factory=list)
    title: Optional[str] = None


class ModerateIn(BaseModel):

    moderate: bool

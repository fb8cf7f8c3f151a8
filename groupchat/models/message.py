from datetime import datetime
from typing import Dict, List, TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    channel: str
    creator: str
    type: str
    text: str
    user_mentions: List[str]
    moderate: bool
    timestamps: Dict[str, datetime]

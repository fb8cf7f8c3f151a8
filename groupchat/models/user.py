from typing import Optional, TypedDict


class UserSummary(TypedDict, total=False):

    _id: str
    email: str
    full_name: Optional[str]

import re
from typing import Any, Iterable, List, Optional

MENTION_PATTERN = re.compile(r"@([a-fA-F0-9]{24})")


def parse_mentions(text: Optional[str]) -> List[str]:
    """User ids mentioned in ``text``, each once, in order of first appearance."""
    mentions: List[str] = []
    for match in MENTION_PATTERN.finditer(text or ""):
        user_id = match.group(1).lower()
        if user_id not in mentions:
            mentions.append(user_id)
    return mentions


def display_name(user: Any) -> str:
    if isinstance(user, dict):
        return user.get("full_name") or user.get("email") or str(user.get("_id"))
    return str(user)


def render_mentions(text: Optional[str], user_mentions: Optional[Iterable[Any]], skip_link: bool = False) -> str:
    """Replace ``@<user id>`` with the mentioned user's display name.

    Without ``skip_link`` each mention becomes a link to the user profile.
    """
    users = {}
    for user in user_mentions or []:
        user_id = str(user.get("_id")) if isinstance(user, dict) else str(user)
        users[user_id.lower()] = user

    def _replace(match: "re.Match[str]") -> str:
        user_id = match.group(1).lower()
        if user_id not in users:
            return match.group(0)
        name = display_name(users[user_id])
        if skip_link:
            return f"@{name}"
        return f'<a href="#/profile/{user_id}/details/view">@{name}</a>'

    return MENTION_PATTERN.sub(_replace, text or "")

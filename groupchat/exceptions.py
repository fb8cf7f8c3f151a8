"""
Chat domain errors.

Raised by repositories and the conversation service, mapped to HTTP status
codes by the application in ``groupchat.main``.
"""


class ChatError(Exception):
    """Base class for every chat error."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PersistenceError(ChatError):
    """A store operation failed. Maps to: HTTP 503"""


class ConcurrentModificationError(PersistenceError):
    """A guarded write kept losing against concurrent writers. Maps to: HTTP 409"""


class ConfigurationError(ChatError):
    """Contradictory or incomplete options supplied by the caller. Maps to: HTTP 400"""


class NotFoundError(ChatError):
    """Referenced conversation or message does not exist. Maps to: HTTP 404"""

    def __init__(self, message: str = "The requested entity was not found."):
        super().__init__(message)

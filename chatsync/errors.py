"""Error types raised by chatsync."""
from typing import Optional


class ChatError(Exception):
    """Base class for chat errors"""
    pass


class ConfigError(ChatError):
    """Invalid or missing configuration"""
    pass


class PreconditionError(ChatError):
    """An action was rejected locally, before any network call."""
    pass


class TransportError(ChatError):
    """The backend could not be reached or returned an unreadable body."""
    pass


class ServerRejected(ChatError):
    """The backend answered with a non-success status.

    ``message`` holds the server-provided text when the response carried one.
    """

    def __init__(self, status: int, message: Optional[str] = None):
        self.status = status
        self.message = message
        super().__init__(message or f"server returned HTTP {status}")


class MutationStateError(ChatError):
    """Illegal transition of a pending mutation."""
    pass


def user_message(error: Exception, default: str) -> str:
    """Pick the text shown to the user for a failed mutation."""
    if isinstance(error, ServerRejected) and error.message:
        return error.message
    if isinstance(error, TransportError):
        return "Network error"
    if isinstance(error, PreconditionError):
        return str(error)
    return default

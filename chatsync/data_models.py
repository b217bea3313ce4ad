"""
Data models for chatsync.
These models define the structure of the conversation data held by the stores.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple, Union


@dataclass(frozen=True, order=True)
class ServerId:
    """Message identity assigned by the backend."""
    value: int

    def __post_init__(self):
        if self.value <= 0:
            raise ValueError(f"server ids are positive, got {self.value}")

    def __str__(self) -> str:
        return str(self.value)


@dataclass(frozen=True, order=True)
class LocalId:
    """Client-side identity of a provisional message or pending mutation.

    Never equal to a ServerId, whatever the numeric value.
    """
    value: int

    def __str__(self) -> str:
        return f"local-{self.value}"


MessageId = Union[ServerId, LocalId]


def is_provisional(message_id: MessageId) -> bool:
    return isinstance(message_id, LocalId)


def utc(dt: datetime) -> datetime:
    """Normalise a datetime to an aware UTC value (naive means UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Attachment:
    """A file attached to a message.

    ``id`` is the staging index while provisional and the server id once
    confirmed; ``url`` is either a local preview reference or a permanent one.
    """
    id: int
    url: str
    kind: str  # 'image', 'video' or 'file'
    display_name: str


@dataclass(frozen=True)
class Message:
    """Represents a chat message."""
    id: MessageId
    thread_id: int
    sender_id: int
    content: str
    created_at: datetime
    attachments: Tuple[Attachment, ...] = ()
    read: bool = False
    sender_name: str = ""

    @property
    def provisional(self) -> bool:
        return is_provisional(self.id)


@dataclass(frozen=True)
class Thread:
    """Represents a conversation thread and its summary state."""
    id: int
    kind: str  # 'direct' or 'group'
    display_name: str
    avatar_ref: str = ""
    last_message_preview: str = ""
    last_message_time: Optional[datetime] = None
    unread_count: int = 0
    online: bool = False
    blocked: bool = False  # I blocked the peer
    peer_user_id: Optional[int] = None
    bio: Optional[str] = None
    birthdate: Optional[str] = None

    def __post_init__(self):
        if self.unread_count < 0:
            raise ValueError(f"unread_count cannot be negative ({self.unread_count})")


@dataclass(frozen=True)
class UserSummary:
    """A user returned by search, used to start a new thread."""
    id: int
    username: str
    display_name: str = ""
    avatar_ref: str = ""


@dataclass(frozen=True)
class Notice:
    """A user-visible message raised by the engine."""
    text: str
    thread_id: Optional[int] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types. Platform ids are kept as strings
so Discord snowflakes and Telegram peer ids travel through the same fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class SessionStatus(str, Enum):
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    EXPIRED = "expired"
    CLEARED = "cleared"


class DisconnectReason(str, Enum):
    """Classified reason for a personal-messaging disconnect."""

    LOGGED_OUT = "logged_out"
    STREAM_RESTART_REQUIRED = "stream_restart_required"
    CONNECTION_LOST = "connection_lost"


class MediaKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class ForwardDirection(str, Enum):
    # inbound: personal chat -> group channel, outbound: group channel -> personal chat
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass(frozen=True)
class TrackedLink:
    """A URL shared in a monitored channel with its read flag."""

    url: str
    message_id: str
    channel_id: str
    guild_id: str
    author: str
    author_id: str
    posted_at: datetime
    read: bool = False
    channel_name: Optional[str] = None
    content: str = ""


@dataclass(frozen=True)
class ChatChannelMapping:
    external_chat_id: str
    group_channel_id: str
    active: bool = True


@dataclass(frozen=True)
class DMReactionMapping:
    """Emoji on a digest message and the link(s) it toggles.

    ``payload`` is a single message id for numbered/lettered entries and an
    ordered list of message ids for the bulk entry.
    """

    digest_message_id: str
    emoji: str
    payload: Union[str, tuple[str, ...]]
    owner_user_id: str
    created_at: datetime
    expires_at: datetime
    guild_id: Optional[str] = None

    @property
    def is_bulk(self) -> bool:
        return isinstance(self.payload, tuple)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    status: SessionStatus
    last_used_at: datetime
    device_info: str = ""
    notes: str = ""


@dataclass(frozen=True)
class ForwardedMessageLink:
    """Association between a personal-chat message and its group-side counterpart."""

    external_chat_id: str
    external_message_id: str
    group_channel_id: str
    group_message_id: str
    direction: ForwardDirection
    created_at: datetime
    group_guild_id: Optional[str] = None
    sender: str = ""
    content: str = ""


@dataclass(frozen=True)
class GroupAttachment:
    filename: str
    size: int
    url: str = ""
    content_type: Optional[str] = None
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class GroupMessage:
    """Minimal group-chat message context used by the core handlers."""

    message_id: str
    channel_id: str
    guild_id: Optional[str]
    author_id: str
    author_name: str
    text: str
    created_at: datetime
    author_is_bot: bool = False
    channel_name: Optional[str] = None
    attachments: tuple[GroupAttachment, ...] = ()


@dataclass(frozen=True)
class ReactionEvent:
    """A reaction added or removed on a group-chat message (guild or DM)."""

    message_id: str
    channel_id: str
    guild_id: Optional[str]
    user_id: str
    emoji: str
    emoji_name: str = ""
    is_custom: bool = False
    user_is_bot: bool = False
    message_author_id: Optional[str] = None

    @property
    def is_direct_message(self) -> bool:
        return self.guild_id is None


@dataclass(frozen=True)
class InboundMessage:
    """Personal-chat message context used by the forwarding pipeline."""

    chat_id: str
    message_id: str
    sender_name: str
    text: str
    kind: MediaKind
    sent_at: datetime
    from_me: bool = False
    filename: Optional[str] = None
    mime_type: Optional[str] = None
    is_protocol: bool = False
    is_key_exchange: bool = False
    raw: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class OutboundMedia:
    data: bytes = field(repr=False)
    filename: str
    mime_type: str
    kind: MediaKind
    caption: str = ""


@dataclass(frozen=True)
class SentMessage:
    channel_id: str
    message_id: str


@dataclass(frozen=True)
class MemberProfile:
    user_id: str
    is_administrator: bool
    can_manage_messages: bool
    role_names: tuple[str, ...] = ()

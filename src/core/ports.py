"""Ports (interfaces) used by the core services.

Ports define the minimal contracts for storage, notification, and platform
adapters so that the core can be reused with different backends and tested
with simple fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from core.models import (
    ChatChannelMapping,
    DisconnectReason,
    DMReactionMapping,
    ForwardedMessageLink,
    GroupAttachment,
    InboundMessage,
    MemberProfile,
    OutboundMedia,
    SentMessage,
    SessionRecord,
    SessionStatus,
    TrackedLink,
)


class LinkStorePort(Protocol):
    """TrackedLink persistence keyed by (message_id, guild_id)."""

    def upsert_link(self, link: TrackedLink) -> None:
        ...

    def find_link(self, message_id: str, guild_id: str) -> Optional[TrackedLink]:
        ...

    def find_link_by_message(self, message_id: str) -> Optional[TrackedLink]:
        ...

    def set_link_read(self, message_id: str, guild_id: str, read: bool) -> bool:
        ...

    def delete_link(self, message_id: str, guild_id: str) -> bool:
        ...

    def list_unread_links(self, exclude_author_id: str, guild_id: Optional[str] = None) -> list[TrackedLink]:
        ...


class ChatMappingPort(Protocol):
    def find_mapping_for_chat(self, chat_id: str) -> Optional[ChatChannelMapping]:
        ...

    def find_mapping_for_channel(self, channel_id: str) -> Optional[ChatChannelMapping]:
        ...

    def list_chat_mappings(self) -> list[ChatChannelMapping]:
        ...


class DMMappingPort(Protocol):
    def save_dm_mapping(self, mapping: DMReactionMapping) -> None:
        ...

    def find_dm_mapping(self, digest_message_id: str, emoji: str) -> Optional[DMReactionMapping]:
        ...

    def delete_dm_mapping(self, digest_message_id: str, emoji: str) -> None:
        ...

    def delete_expired_dm_mappings(self, now: datetime) -> int:
        ...


class SessionStorePort(Protocol):
    def get_active_session(self) -> Optional[SessionRecord]:
        ...

    def get_latest_session(self) -> Optional[SessionRecord]:
        """Most recent record that was not expired or cleared."""
        ...

    def save_session(self, record: SessionRecord) -> None:
        ...

    def update_session_status(self, session_id: str, status: SessionStatus, notes: str = "") -> None:
        ...

    def clear_sessions(self) -> int:
        ...


class ForwardLinkPort(Protocol):
    def save_forwarded_link(self, link: ForwardedMessageLink) -> None:
        ...

    def find_forwarded_link_by_group_message(self, group_message_id: str) -> Optional[ForwardedMessageLink]:
        ...

    def find_forwarded_link_by_external_message(
        self, external_chat_id: str, external_message_id: str
    ) -> Optional[ForwardedMessageLink]:
        ...

    def delete_forwarded_links_before(self, cutoff: datetime) -> int:
        ...


class MonitoredChannelPort(Protocol):
    def list_monitored_channels(self, guild_id: str) -> set[str]:
        ...


class HealthProbePort(Protocol):
    def self_test(self) -> dict:
        ...


class NotifierPort(Protocol):
    """Administrative sink: post a message to the admin channel."""

    async def notify(
        self,
        message: str,
        level: str = "info",
        image: Optional[bytes] = None,
        filename: str = "image.png",
    ) -> None:
        ...


class SessionGate(Protocol):
    @property
    def is_connected(self) -> bool:
        ...


class CredentialStorePort(Protocol):
    """Local credential material of the personal-messaging client."""

    def exists(self) -> bool:
        ...

    async def clear(self) -> None:
        ...

    async def force_clear(self) -> None:
        ...


QrCallback = Callable[[str], Awaitable[None]]


class MessengerSessionPort(Protocol):
    """Connection control of the personal-messaging client.

    Implementations raise ``ConnectionClosed`` with a classified reason when
    connecting or logging in fails, and ``LoginTimeout`` when no QR code was
    scanned in time.
    """

    async def connect(self) -> bool:
        """Connect with the local material and report whether it is authorized."""
        ...

    async def login_with_qr(self, on_qr: QrCallback) -> None:
        ...

    async def wait_disconnected(self) -> DisconnectReason:
        ...

    async def teardown(self) -> None:
        ...

    async def describe_device(self) -> str:
        ...


class MessengerPort(Protocol):
    """Outbound capabilities of the personal-messaging client."""

    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        ...

    async def send_media(self, chat_id: str, media: OutboundMedia) -> Optional[str]:
        ...

    async def send_reaction(self, chat_id: str, message_id: str, symbol: str) -> bool:
        ...

    async def download_media(self, message: InboundMessage) -> bytes:
        ...

    async def refresh_media(self, message: InboundMessage) -> InboundMessage:
        ...


class GroupChatPort(Protocol):
    """Outbound capabilities of the group-chat bot."""

    def has_channel(self, channel_id: str) -> bool:
        ...

    async def send_forwarded(
        self,
        channel_id: str,
        message: InboundMessage,
        media: Optional[OutboundMedia] = None,
        media_failed: bool = False,
    ) -> Optional[str]:
        ...

    async def download_attachment(self, attachment: GroupAttachment) -> bytes:
        ...

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        ...

    async def remove_user_reaction(self, channel_id: str, message_id: str, emoji: str, user_id: str) -> None:
        ...

    async def user_reactions(self, channel_id: str, message_id: str, user_id: str) -> list[str]:
        ...

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        ...

    async def send_direct_message(self, user_id: str, text: str) -> Optional[SentMessage]:
        ...

    async def send_digest(
        self, user_id: str, links: Sequence[TrackedLink], total: int, cross_guild: bool
    ) -> Optional[SentMessage]:
        ...

    async def member_profile(self, guild_id: str, user_id: str) -> Optional[MemberProfile]:
        ...

    async def visible_channel_ids(self, user_id: str, guild_id: Optional[str] = None) -> set[str]:
        ...

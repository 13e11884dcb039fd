"""Bidirectional message forwarding between mapped channels and chats.

Outbound: group channel -> personal chat, attachments first (text as the
caption of the first one), then any remaining text.
Inbound: personal chat -> group channel, one group message per personal
message, media re-requested once if the first download fails.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from datetime import datetime, timezone
from typing import Callable, Optional

from core.chat_ids import chat_id_variants
from core.config import BridgeConfig
from core.models import (
    ChatChannelMapping,
    ForwardDirection,
    ForwardedMessageLink,
    GroupAttachment,
    GroupMessage,
    InboundMessage,
    MediaKind,
    OutboundMedia,
)
from core.ports import ChatMappingPort, ForwardLinkPort, GroupChatPort, MessengerPort, SessionGate
from core.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
VIDEO_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv", ".webm"}

MEDIA_DEFAULTS = {
    MediaKind.IMAGE: ("image.jpg", "image/jpeg"),
    MediaKind.VIDEO: ("video.mp4", "video/mp4"),
    MediaKind.AUDIO: ("audio.ogg", "audio/ogg"),
    MediaKind.DOCUMENT: ("document", "application/octet-stream"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def classify_attachment(filename: str) -> MediaKind:
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if extension in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.DOCUMENT


def attachment_mime(attachment: GroupAttachment) -> str:
    if attachment.content_type:
        return attachment.content_type.split(";", 1)[0].strip()
    guessed, _ = mimetypes.guess_type(attachment.filename or "")
    return guessed or "application/octet-stream"


def media_defaults(message: InboundMessage) -> tuple[str, str]:
    """Filename and mime type for an inbound media message."""

    default_name, default_mime = MEDIA_DEFAULTS.get(message.kind, MEDIA_DEFAULTS[MediaKind.DOCUMENT])
    if message.kind is MediaKind.DOCUMENT:
        return message.filename or default_name, message.mime_type or default_mime
    return default_name, default_mime


class ForwardingPipeline:
    def __init__(
        self,
        mappings: ChatMappingPort,
        forwarded: ForwardLinkPort,
        messenger: MessengerPort,
        group: GroupChatPort,
        session: SessionGate,
        config: BridgeConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._mappings = mappings
        self._forwarded = forwarded
        self._messenger = messenger
        self._group = group
        self._session = session
        self._config = config
        self._clock = clock
        self._downloads = asyncio.Semaphore(max(config.max_concurrent_downloads, 1))
        # Held while a group message is sent and recorded, so the account's own
        # copy of it is recognised when it comes back as a personal-chat message.
        self._outbound_locks: dict[str, asyncio.Lock] = {}
        self._media_policy = RetryPolicy(
            max_attempts=2,
            delay=config.media_retry_delay,
            name="Media download",
        )

    def _outbound_lock(self, chat_id: str) -> asyncio.Lock:
        lock = self._outbound_locks.get(chat_id)
        if lock is None:
            lock = self._outbound_locks[chat_id] = asyncio.Lock()
        return lock

    def resolve_mapping_for_chat(self, chat_id: str) -> Optional[ChatChannelMapping]:
        for variant in chat_id_variants(chat_id):
            mapping = self._mappings.find_mapping_for_chat(variant)
            if mapping is not None and mapping.active:
                return mapping
        return None

    async def forward_to_messenger(self, message: GroupMessage) -> int:
        """Forward a group message to its mapped chat; returns transmissions sent."""

        if not self._config.enabled or message.author_is_bot:
            return 0
        mapping = self._mappings.find_mapping_for_channel(message.channel_id)
        if mapping is None or not mapping.active:
            return 0
        if not self._session.is_connected:
            LOGGER.warning("Messenger not connected; message %s was not forwarded", message.message_id)
            return 0

        chat_id = mapping.external_chat_id
        async with self._outbound_lock(chat_id):
            sent_ids = await self._send_outbound(chat_id, message)
        if not sent_ids:
            return 0

        LOGGER.info("Forwarded message %s to chat %s (%s part(s))", message.message_id, chat_id, len(sent_ids))
        try:
            await self._group.add_reaction(message.channel_id, message.message_id, self._config.forwarded_emoji)
        except Exception:
            LOGGER.warning("Could not mark message %s as forwarded", message.message_id, exc_info=True)
        return len(sent_ids)

    async def _send_outbound(self, chat_id: str, message: GroupMessage) -> list[str]:
        """Send attachments then text; every transmitted part is recorded as it goes."""

        sent_ids: list[str] = []
        pending_text = message.text.strip()

        for attachment in message.attachments:
            if attachment.size > self._config.max_attachment_bytes:
                LOGGER.warning(
                    "Skipping %s: %s bytes exceeds the %s byte limit",
                    attachment.filename,
                    attachment.size,
                    self._config.max_attachment_bytes,
                )
                continue
            try:
                async with self._downloads:
                    data = await self._group.download_attachment(attachment)
                media = OutboundMedia(
                    data=data,
                    filename=attachment.filename,
                    mime_type=attachment_mime(attachment),
                    kind=classify_attachment(attachment.filename),
                    caption=pending_text,
                )
                external_id = await self._messenger.send_media(chat_id, media)
            except Exception:
                LOGGER.exception("Failed to forward attachment %s", attachment.filename)
                continue
            if external_id is None:
                continue
            sent_ids.append(external_id)
            self._record_outbound(chat_id, external_id, message)
            pending_text = ""

        if pending_text:
            try:
                external_id = await self._messenger.send_text(chat_id, pending_text)
            except Exception:
                LOGGER.exception("Failed to forward text of message %s", message.message_id)
                external_id = None
            if external_id is not None:
                sent_ids.append(external_id)
                self._record_outbound(chat_id, external_id, message)
        return sent_ids

    def _record_outbound(self, chat_id: str, external_id: str, message: GroupMessage) -> None:
        self._record(
            ForwardedMessageLink(
                external_chat_id=chat_id,
                external_message_id=external_id,
                group_channel_id=message.channel_id,
                group_message_id=message.message_id,
                direction=ForwardDirection.OUTBOUND,
                created_at=self._clock(),
                group_guild_id=message.guild_id,
                sender=message.author_name,
                content=message.text if self._config.archive_messages else "",
            )
        )

    async def forward_to_group(self, message: InboundMessage) -> Optional[str]:
        """Forward a personal-chat message to its mapped channel; returns the group message id."""

        if not self._config.enabled:
            return None
        if message.is_protocol or message.is_key_exchange:
            return None
        mapping = self.resolve_mapping_for_chat(message.chat_id)
        if mapping is None:
            return None
        if message.kind is MediaKind.TEXT and not message.text.strip():
            return None
        if message.from_me:
            # Wait for any group message still being sent to this chat to be recorded.
            async with self._outbound_lock(mapping.external_chat_id):
                pass
        if self._already_forwarded(message, mapping):
            LOGGER.debug("Message %s/%s was already forwarded", message.chat_id, message.message_id)
            return None

        channel_id = mapping.group_channel_id
        if not self._group.has_channel(channel_id):
            LOGGER.warning("Channel %s mapped to chat %s was not found", channel_id, message.chat_id)
            return None

        media = None
        media_failed = False
        if message.kind is not MediaKind.TEXT:
            media = await self._download_inbound(message)
            media_failed = media is None

        group_message_id = await self._group.send_forwarded(channel_id, message, media, media_failed)
        if group_message_id is None:
            return None

        LOGGER.info("Forwarded %s message from chat %s to channel %s", message.kind.value, message.chat_id, channel_id)
        self._record(
            ForwardedMessageLink(
                external_chat_id=message.chat_id,
                external_message_id=message.message_id,
                group_channel_id=channel_id,
                group_message_id=group_message_id,
                direction=ForwardDirection.INBOUND,
                created_at=self._clock(),
                sender=message.sender_name,
                content=message.text if self._config.archive_messages else "",
            )
        )
        return group_message_id

    def _already_forwarded(self, message: InboundMessage, mapping: ChatChannelMapping) -> bool:
        """True for a repeat delivery or for the account's copy of a bridged group message."""

        for chat_id in dict.fromkeys([message.chat_id, mapping.external_chat_id]):
            if self._forwarded.find_forwarded_link_by_external_message(chat_id, message.message_id):
                return True
        return False

    async def _download_inbound(self, message: InboundMessage) -> Optional[OutboundMedia]:
        current = message

        async def attempt() -> bytes:
            async with self._downloads:
                return await self._messenger.download_media(current)

        async def re_request(error: BaseException, attempt_number: int) -> None:
            nonlocal current
            current = await self._messenger.refresh_media(current)

        try:
            data = await self._media_policy.run(attempt, before_retry=re_request)
        except Exception:
            LOGGER.exception("Media download failed for %s/%s", message.chat_id, message.message_id)
            return None

        filename, mime_type = media_defaults(message)
        return OutboundMedia(
            data=data,
            filename=filename,
            mime_type=mime_type,
            kind=message.kind,
            caption=message.text,
        )

    def _record(self, link: ForwardedMessageLink) -> None:
        try:
            self._forwarded.save_forwarded_link(link)
        except Exception:
            LOGGER.exception("Could not persist forwarded link for %s", link.group_message_id)

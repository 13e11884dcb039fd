"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

from typing import Any

from telethon.tl.custom import Message
from telethon.tl.types import MessageActionSecureValuesSent, MessageActionSecureValuesSentMe

from adapters.notification_formatting import describe_entity
from core.models import InboundMessage, MediaKind

# Service actions carrying key/credential handoff rather than chat content.
KEY_EXCHANGE_ACTIONS = (MessageActionSecureValuesSent, MessageActionSecureValuesSentMe)


def classify_content(message: Message) -> MediaKind:
    """Inspect the typed payload of a message."""

    if getattr(message, "photo", None):
        return MediaKind.IMAGE
    if getattr(message, "video", None) or getattr(message, "gif", None) or getattr(message, "video_note", None):
        return MediaKind.VIDEO
    if getattr(message, "voice", None) or getattr(message, "audio", None):
        return MediaKind.AUDIO
    if getattr(message, "document", None):
        return MediaKind.DOCUMENT
    return MediaKind.TEXT


def _file_attr(message: Message, name: str) -> Any:
    file = getattr(message, "file", None)
    if file is None:
        return None
    return getattr(file, name, None)


async def sender_label(message: Message) -> str:
    if getattr(message, "out", False):
        return "You"
    try:
        sender = await message.get_sender()
    except Exception:
        sender = None
    if sender is None:
        return str(getattr(message, "sender_id", None) or "Unknown")
    return describe_entity(sender)


async def build_inbound_message(message: Message) -> InboundMessage:
    """Build a core InboundMessage from a Telethon Message."""

    action = getattr(message, "action", None)
    kind = classify_content(message) if action is None else MediaKind.TEXT
    return InboundMessage(
        chat_id=str(message.chat_id),
        message_id=str(message.id),
        sender_name=await sender_label(message),
        text=message.raw_text or "",
        kind=kind,
        sent_at=message.date,
        from_me=bool(getattr(message, "out", False)),
        filename=_file_attr(message, "name"),
        mime_type=_file_attr(message, "mime_type"),
        is_protocol=action is not None,
        is_key_exchange=isinstance(action, KEY_EXCHANGE_ACTIONS),
        raw=message,
    )

"""Discord-to-core mapping adapter.

Turns discord.py messages and raw reaction payloads into core models so the
handlers never touch discord.py types.
"""

from __future__ import annotations

from typing import Optional

import discord

from core.models import GroupAttachment, GroupMessage, ReactionEvent


def build_attachment(attachment: discord.Attachment) -> GroupAttachment:
    return GroupAttachment(
        filename=attachment.filename,
        size=attachment.size,
        url=attachment.url,
        content_type=attachment.content_type,
        raw=attachment,
    )


def build_group_message(message: discord.Message) -> GroupMessage:
    guild = message.guild
    return GroupMessage(
        message_id=str(message.id),
        channel_id=str(message.channel.id),
        guild_id=str(guild.id) if guild is not None else None,
        author_id=str(message.author.id),
        author_name=message.author.display_name,
        text=message.content or "",
        created_at=message.created_at,
        author_is_bot=message.author.bot,
        channel_name=getattr(message.channel, "name", None),
        attachments=tuple(build_attachment(item) for item in message.attachments),
    )


def build_reaction_event(payload: discord.RawReactionActionEvent, bot_user_id: Optional[int]) -> ReactionEvent:
    """Map a raw reaction payload (guild or DM, add or remove)."""

    emoji = payload.emoji
    member = getattr(payload, "member", None)
    user_is_bot = payload.user_id == bot_user_id or bool(member is not None and member.bot)
    author_id = getattr(payload, "message_author_id", None)
    return ReactionEvent(
        message_id=str(payload.message_id),
        channel_id=str(payload.channel_id),
        guild_id=str(payload.guild_id) if payload.guild_id is not None else None,
        user_id=str(payload.user_id),
        emoji=str(emoji),
        emoji_name=emoji.name or "",
        is_custom=emoji.is_custom_emoji(),
        user_is_bot=user_is_bot,
        message_author_id=str(author_id) if author_id is not None else None,
    )

"""discord.py implementation of the group-chat and notification ports."""

from __future__ import annotations

import io
import logging
from typing import Optional, Sequence

import discord

from adapters.notification_formatting import (
    DISCORD_MESSAGE_LIMIT,
    build_digest_view,
    format_admin_notice,
    format_forwarded_message,
)
from core.models import GroupAttachment, InboundMessage, MemberProfile, OutboundMedia, SentMessage, TrackedLink

LOGGER = logging.getLogger(__name__)


class DiscordGateway:
    def __init__(self, bot: discord.Client, admin_channel_id: Optional[int], timezone_name: str = "UTC") -> None:
        self._bot = bot
        self._admin_channel_id = admin_channel_id
        self._timezone = timezone_name

    async def _channel(self, channel_id: str):
        channel = self._bot.get_channel(int(channel_id))
        if channel is None:
            channel = await self._bot.fetch_channel(int(channel_id))
        return channel

    async def _partial(self, channel_id: str, message_id: str) -> discord.PartialMessage:
        channel = await self._channel(channel_id)
        return channel.get_partial_message(int(message_id))

    async def _user(self, user_id: str) -> discord.User:
        user = self._bot.get_user(int(user_id))
        if user is None:
            user = await self._bot.fetch_user(int(user_id))
        return user

    # Notification sink

    async def notify(
        self,
        message: str,
        level: str = "info",
        image: Optional[bytes] = None,
        filename: str = "image.png",
    ) -> None:
        if not self._admin_channel_id:
            LOGGER.warning("No admin channel configured; dropping notice: %s", message)
            return
        channel = await self._channel(str(self._admin_channel_id))
        content = format_admin_notice(message, level)[:DISCORD_MESSAGE_LIMIT]
        file = discord.File(io.BytesIO(image), filename=filename) if image is not None else None
        if file is None:
            await channel.send(content=content)
        else:
            await channel.send(content=content, file=file)

    # Group-chat port

    def has_channel(self, channel_id: str) -> bool:
        return self._bot.get_channel(int(channel_id)) is not None

    async def send_forwarded(
        self,
        channel_id: str,
        message: InboundMessage,
        media: Optional[OutboundMedia] = None,
        media_failed: bool = False,
    ) -> Optional[str]:
        channel = await self._channel(channel_id)
        content = format_forwarded_message(message, self._timezone, media, media_failed)
        if media is None:
            sent = await channel.send(content=content)
        else:
            sent = await channel.send(content=content, file=discord.File(io.BytesIO(media.data), filename=media.filename))
        return str(sent.id)

    async def download_attachment(self, attachment: GroupAttachment) -> bytes:
        if attachment.raw is None:
            raise ValueError(f"Attachment {attachment.filename} has no handle")
        return await attachment.raw.read()

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str) -> None:
        partial = await self._partial(channel_id, message_id)
        await partial.add_reaction(emoji)

    async def remove_user_reaction(self, channel_id: str, message_id: str, emoji: str, user_id: str) -> None:
        partial = await self._partial(channel_id, message_id)
        await partial.remove_reaction(emoji, discord.Object(id=int(user_id)))

    async def user_reactions(self, channel_id: str, message_id: str, user_id: str) -> list[str]:
        """Every emoji the user currently holds on the message."""

        message = await (await self._partial(channel_id, message_id)).fetch()
        held = []
        for reaction in message.reactions:
            async for user in reaction.users():
                if user.id == int(user_id):
                    held.append(str(reaction.emoji))
                    break
        return held

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        partial = await self._partial(channel_id, message_id)
        try:
            await partial.delete()
        except discord.NotFound:
            LOGGER.debug("Message %s in channel %s was already deleted", message_id, channel_id)

    async def send_direct_message(self, user_id: str, text: str) -> Optional[SentMessage]:
        try:
            user = await self._user(user_id)
            sent = await user.send(text[:DISCORD_MESSAGE_LIMIT])
        except (discord.Forbidden, discord.NotFound) as error:
            LOGGER.warning("Could not DM user %s: %s", user_id, error)
            return None
        return SentMessage(channel_id=str(sent.channel.id), message_id=str(sent.id))

    async def send_digest(
        self, user_id: str, links: Sequence[TrackedLink], total: int, cross_guild: bool
    ) -> Optional[SentMessage]:
        view = build_digest_view(links, total, cross_guild)
        embed = discord.Embed(title=view.title, description=view.description, color=view.color)
        for name, value in view.fields:
            embed.add_field(name=name, value=value, inline=False)
        if view.footer:
            embed.set_footer(text=view.footer)
        try:
            user = await self._user(user_id)
            sent = await user.send(embed=embed)
        except (discord.Forbidden, discord.NotFound) as error:
            LOGGER.warning("Could not send digest to user %s: %s", user_id, error)
            return None
        return SentMessage(channel_id=str(sent.channel.id), message_id=str(sent.id))

    async def _member(self, guild: discord.Guild, user_id: str) -> Optional[discord.Member]:
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(int(user_id))
        except (discord.NotFound, discord.Forbidden):
            return None

    async def member_profile(self, guild_id: str, user_id: str) -> Optional[MemberProfile]:
        guild = self._bot.get_guild(int(guild_id))
        if guild is None:
            return None
        member = await self._member(guild, user_id)
        if member is None:
            return None
        permissions = member.guild_permissions
        return MemberProfile(
            user_id=user_id,
            is_administrator=permissions.administrator,
            can_manage_messages=permissions.manage_messages,
            role_names=tuple(role.name for role in member.roles),
        )

    async def visible_channel_ids(self, user_id: str, guild_id: Optional[str] = None) -> set[str]:
        """Channels the user can view, in one guild or across every shared guild."""

        if guild_id is not None:
            guild = self._bot.get_guild(int(guild_id))
            guilds = [guild] if guild is not None else []
        else:
            guilds = list(self._bot.guilds)

        visible: set[str] = set()
        for guild in guilds:
            member = await self._member(guild, user_id)
            if member is None:
                continue
            for channel in [*guild.text_channels, *guild.threads]:
                if channel.permissions_for(member).view_channel:
                    visible.add(str(channel.id))
        return visible

"""Reaction-driven read/unread state for tracked links.

Handles three reaction surfaces:
- the "done" emoji on a monitored-channel message toggles that link;
- a delete emoji removes the link and its message (author or admin only);
- numbered/lettered/bulk emojis on a digest DM toggle the referenced links.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from core.channels import MonitoredChannels
from core.config import LinkTrackerConfig
from core.models import MemberProfile, ReactionEvent
from core.ports import DMMappingPort, GroupChatPort, LinkStorePort

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def has_admin_rights(profile: MemberProfile, config: LinkTrackerConfig) -> bool:
    """Elevated permission or a role name that looks like a moderator role."""

    if profile.is_administrator or profile.can_manage_messages:
        return True
    for role_name in profile.role_names:
        lowered = role_name.lower()
        if lowered in config.admin_role_names:
            return True
        if any(pattern in lowered for pattern in config.admin_role_patterns):
            return True
    return False


class LinkReadStateMachine:
    def __init__(
        self,
        links: LinkStorePort,
        dm_mappings: DMMappingPort,
        group: GroupChatPort,
        channels: MonitoredChannels,
        config: LinkTrackerConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._links = links
        self._dm_mappings = dm_mappings
        self._group = group
        self._channels = channels
        self._config = config
        self._clock = clock

    async def on_reaction_added(self, event: ReactionEvent) -> None:
        if event.user_is_bot:
            return
        if event.is_direct_message:
            self.apply_digest_reaction(event, read=True)
            return
        if not self._channels.is_monitored(event.guild_id, event.channel_id):
            return
        if event.emoji in self._config.delete_emojis:
            await self.delete_link(event)
            return
        if event.emoji == self._config.done_emoji:
            self.apply_link_reaction(event, read=True)

    async def on_reaction_removed(self, event: ReactionEvent) -> None:
        if event.user_is_bot:
            return
        if event.is_direct_message:
            self.apply_digest_reaction(event, read=False)
            return
        if not self._channels.is_monitored(event.guild_id, event.channel_id):
            return
        if event.emoji == self._config.done_emoji:
            self.apply_link_reaction(event, read=False)

    def apply_link_reaction(self, event: ReactionEvent, read: bool) -> bool:
        """Flip the read flag of the reacted link; the author's own reactions are ignored."""

        link = self._links.find_link(event.message_id, event.guild_id)
        if link is None:
            return False
        if link.author_id == event.user_id:
            LOGGER.debug("Ignoring self-reaction by %s on %s", event.user_id, event.message_id)
            return False
        if link.read == read:
            return False
        updated = self._links.set_link_read(event.message_id, link.guild_id, read)
        if updated:
            LOGGER.info("Link %s marked %s by %s", event.message_id, "read" if read else "unread", event.user_id)
        return updated

    def apply_digest_reaction(self, event: ReactionEvent, read: bool) -> int:
        """Apply a digest reaction and return the number of links updated."""

        mapping = self._dm_mappings.find_dm_mapping(event.message_id, event.emoji)
        if mapping is None:
            return 0
        if mapping.is_expired(self._clock()):
            self._dm_mappings.delete_dm_mapping(event.message_id, event.emoji)
            LOGGER.info("Discarded expired digest mapping %s %s", event.message_id, event.emoji)
            return 0
        if mapping.owner_user_id != event.user_id:
            return 0

        if mapping.is_bulk:
            updated = 0
            for message_id in mapping.payload:
                # The digest may span guilds, so each link carries its own guild id.
                link = self._links.find_link_by_message(message_id)
                if link is None:
                    LOGGER.warning("Digest entry %s no longer exists", message_id)
                    continue
                if self._links.set_link_read(message_id, link.guild_id, read):
                    updated += 1
            LOGGER.info("Bulk digest update: %s/%s links marked %s", updated, len(mapping.payload), "read" if read else "unread")
            return updated

        guild_id = mapping.guild_id
        if guild_id is None:
            link = self._links.find_link_by_message(mapping.payload)
            if link is None:
                return 0
            guild_id = link.guild_id
        return 1 if self._links.set_link_read(mapping.payload, guild_id, read) else 0

    async def delete_link(self, event: ReactionEvent) -> bool:
        """Delete a link and its source message when the reactor may do so.

        Anyone else is ignored without feedback.
        """

        link = self._links.find_link(event.message_id, event.guild_id)
        if link is None:
            return False

        allowed = link.author_id == event.user_id
        if not allowed:
            profile = await self._group.member_profile(event.guild_id, event.user_id)
            allowed = profile is not None and has_admin_rights(profile, self._config)
        if not allowed:
            LOGGER.debug("Ignoring delete reaction by %s on %s", event.user_id, event.message_id)
            return False

        self._links.delete_link(event.message_id, link.guild_id)
        await self._group.delete_message(event.channel_id, event.message_id)
        LOGGER.info("Deleted link %s at the request of %s", event.message_id, event.user_id)
        return True

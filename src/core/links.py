"""Link capture for monitored channels."""

from __future__ import annotations

import logging
import re
from typing import Optional

from core.channels import MonitoredChannels
from core.config import LinkTrackerConfig
from core.models import GroupMessage, TrackedLink
from core.ports import GroupChatPort, LinkStorePort

LOGGER = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"https?://\S+")


def extract_urls(text: str) -> list[str]:
    return URL_PATTERN.findall(text or "")


class LinkTracker:
    """Store the first URL of each monitored-channel message as a TrackedLink."""

    def __init__(
        self,
        links: LinkStorePort,
        group: GroupChatPort,
        channels: MonitoredChannels,
        config: LinkTrackerConfig,
    ) -> None:
        self._links = links
        self._group = group
        self._channels = channels
        self._config = config

    async def on_message(self, message: GroupMessage) -> Optional[TrackedLink]:
        if not self._config.enabled or message.author_is_bot or message.guild_id is None:
            return None
        if not self._channels.is_monitored(message.guild_id, message.channel_id):
            return None

        urls = extract_urls(message.text)
        if not urls:
            return None

        # One row per (message, guild); the full content keeps any extra URLs.
        link = TrackedLink(
            url=urls[0],
            message_id=message.message_id,
            channel_id=message.channel_id,
            guild_id=message.guild_id,
            author=message.author_name,
            author_id=message.author_id,
            posted_at=message.created_at,
            channel_name=message.channel_name,
            content=message.text,
        )
        self._links.upsert_link(link)
        LOGGER.info(
            "Tracked %s link(s) from %s in #%s",
            len(urls),
            message.author_name,
            message.channel_name or message.channel_id,
        )
        await self._group.add_reaction(message.channel_id, message.message_id, self._config.done_emoji)
        return link

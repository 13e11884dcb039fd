"""Unread-link digest sent as a private message.

Each listed link gets a numbered (1-10) or lettered (A-O) reaction and the
digest gets one bulk reaction; every reaction is backed by a persisted
DMReactionMapping so toggles survive restarts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from core.config import DigestConfig
from core.models import DMReactionMapping, SentMessage
from core.ports import DMMappingPort, GroupChatPort, LinkStorePort
from core.rate_limit import RateLimiter

LOGGER = logging.getLogger(__name__)

NUMBER_EMOJIS = ("1️⃣", "2️⃣", "3️⃣", "4️⃣", "5️⃣", "6️⃣", "7️⃣", "8️⃣", "9️⃣", "🔟")
# Regional indicator symbols A-O.
LETTER_EMOJIS = tuple(chr(0x1F1E6 + offset) for offset in range(15))
DIGEST_EMOJIS = NUMBER_EMOJIS + LETTER_EMOJIS
BULK_EMOJI = "✅"
COMMAND_NAME = "unread"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DigestOutcome(str, Enum):
    SENT = "sent"
    EMPTY = "empty"
    DM_FAILED = "dm_failed"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class DigestResult:
    outcome: DigestOutcome
    total: int = 0
    shown: int = 0
    retry_after: float = 0.0


class DigestService:
    def __init__(
        self,
        links: LinkStorePort,
        dm_mappings: DMMappingPort,
        group: GroupChatPort,
        config: DigestConfig,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._links = links
        self._dm_mappings = dm_mappings
        self._group = group
        self._config = config
        self._rate_limiter = rate_limiter
        self._clock = clock

    async def send_digest(self, user_id: str, guild_id: Optional[str] = None) -> DigestResult:
        """Send the requester's unread links; ``guild_id=None`` spans every shared guild."""

        if self._rate_limiter is not None and not self._rate_limiter.allow(user_id, COMMAND_NAME):
            return DigestResult(
                DigestOutcome.RATE_LIMITED,
                retry_after=self._rate_limiter.retry_after(user_id, COMMAND_NAME),
            )

        cross_guild = guild_id is None
        candidates = self._links.list_unread_links(exclude_author_id=user_id, guild_id=guild_id)
        if not candidates:
            return DigestResult(DigestOutcome.EMPTY)

        visible_channels = await self._group.visible_channel_ids(user_id, guild_id)
        visible = [link for link in candidates if link.channel_id in visible_channels]
        if not visible:
            return DigestResult(DigestOutcome.EMPTY)

        limit = min(self._config.max_entries, len(DIGEST_EMOJIS))
        shown = visible[:limit]
        sent = await self._group.send_digest(user_id, shown, len(visible), cross_guild)
        if sent is None:
            return DigestResult(DigestOutcome.DM_FAILED, total=len(visible))

        created_at = self._clock()
        expires_at = created_at + timedelta(hours=self._config.mapping_ttl_hours)
        # Mappings are written before the reactions so an early click resolves.
        for emoji, link in zip(DIGEST_EMOJIS, shown):
            self._dm_mappings.save_dm_mapping(
                DMReactionMapping(
                    digest_message_id=sent.message_id,
                    emoji=emoji,
                    payload=link.message_id,
                    owner_user_id=user_id,
                    created_at=created_at,
                    expires_at=expires_at,
                    guild_id=link.guild_id,
                )
            )
        self._dm_mappings.save_dm_mapping(
            DMReactionMapping(
                digest_message_id=sent.message_id,
                emoji=BULK_EMOJI,
                payload=tuple(link.message_id for link in shown),
                owner_user_id=user_id,
                created_at=created_at,
                expires_at=expires_at,
                guild_id=guild_id,
            )
        )

        for emoji in DIGEST_EMOJIS[: len(shown)] + (BULK_EMOJI,):
            await self._react(sent, emoji)

        LOGGER.info("Digest sent to %s: %s of %s unread links", user_id, len(shown), len(visible))
        return DigestResult(DigestOutcome.SENT, total=len(visible), shown=len(shown))

    async def _react(self, sent: SentMessage, emoji: str) -> None:
        try:
            await self._group.add_reaction(sent.channel_id, sent.message_id, emoji)
        except Exception:
            LOGGER.warning("Could not add %s to digest %s", emoji, sent.message_id, exc_info=True)

"""One-way reaction mirror from group messages to their personal-chat copies.

A personal-chat account holds at most one reaction per message, so a second
reaction by the same group member is undone and explained to them privately.
"""

from __future__ import annotations

import logging

from core.models import ReactionEvent
from core.ports import ForwardLinkPort, GroupChatPort, MessengerPort, SessionGate

LOGGER = logging.getLogger(__name__)

SINGLE_REACTION_NOTICE = (
    "Only one reaction per message can be mirrored to Telegram. "
    "Remove your {held} reaction first if you want to react with {rejected} instead."
)


def reaction_symbol(event: ReactionEvent) -> str:
    """Unicode emoji as-is; custom emoji become a ``:name:`` placeholder."""

    if event.is_custom:
        return f":{event.emoji_name or 'emoji'}:"
    return event.emoji


class ReactionBridge:
    def __init__(
        self,
        forwarded: ForwardLinkPort,
        messenger: MessengerPort,
        group: GroupChatPort,
        session: SessionGate,
    ) -> None:
        self._forwarded = forwarded
        self._messenger = messenger
        self._group = group
        self._session = session
        # (message_id, user_id, emoji) removals this bridge caused itself.
        self._own_removals: set[tuple[str, str, str]] = set()

    async def on_reaction_added(self, event: ReactionEvent) -> bool:
        """Mirror a reaction; returns True when it was transmitted."""

        if event.user_is_bot or event.is_direct_message:
            return False
        link = self._forwarded.find_forwarded_link_by_group_message(event.message_id)
        if link is None:
            return False

        held = await self._group.user_reactions(event.channel_id, event.message_id, event.user_id)
        others = [emoji for emoji in held if emoji != event.emoji]
        if others:
            await self._reject(event, others[0])
            return False

        if not self._session.is_connected:
            LOGGER.warning("Messenger not connected; reaction on %s not mirrored", event.message_id)
            return False
        sent = await self._messenger.send_reaction(
            link.external_chat_id, link.external_message_id, reaction_symbol(event)
        )
        if sent:
            LOGGER.info("Mirrored %s on %s to chat %s", event.emoji, event.message_id, link.external_chat_id)
        return sent

    async def on_reaction_removed(self, event: ReactionEvent) -> bool:
        if event.user_is_bot or event.is_direct_message:
            return False
        key = (event.message_id, event.user_id, event.emoji)
        if key in self._own_removals:
            self._own_removals.discard(key)
            return False
        link = self._forwarded.find_forwarded_link_by_group_message(event.message_id)
        if link is None:
            return False
        if not self._session.is_connected:
            return False
        return await self._messenger.send_reaction(link.external_chat_id, link.external_message_id, "")

    async def _reject(self, event: ReactionEvent, held: str) -> None:
        LOGGER.info("Rejecting second reaction %s by %s on %s", event.emoji, event.user_id, event.message_id)
        self._own_removals.add((event.message_id, event.user_id, event.emoji))
        try:
            await self._group.remove_user_reaction(event.channel_id, event.message_id, event.emoji, event.user_id)
        except Exception:
            self._own_removals.discard((event.message_id, event.user_id, event.emoji))
            LOGGER.warning("Could not remove reaction %s on %s", event.emoji, event.message_id, exc_info=True)
        notice = SINGLE_REACTION_NOTICE.format(held=held, rejected=event.emoji)
        if await self._group.send_direct_message(event.user_id, notice) is None:
            LOGGER.info("Could not notify %s about the single-reaction limit", event.user_id)

"""Shared formatting helpers for Discord-bound text.

Keeping formatting here prevents drift between the admin notices, forwarded
messages, digests, and the /status report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from core.digest import BULK_EMOJI, DIGEST_EMOJIS, DigestOutcome, DigestResult
from core.models import InboundMessage, OutboundMedia, TrackedLink

LOGGER = logging.getLogger(__name__)

DISCORD_MESSAGE_LIMIT = 2000
EMBED_FIELD_LIMIT = 1024
DIGEST_COLOR = 0x00AE86
MEDIA_FAILED_NOTICE = "📎 [Media message - failed to process]"

_LEVEL_EMOJI = {"info": "ℹ️", "warning": "⚠️", "error": "❌"}


def escape_md(value: str) -> str:
    for ch in r"\*_`~|":
        value = value.replace(ch, f"\\{ch}")
    return value


def _clip(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 1] + "…"


def format_admin_notice(message: str, level: str = "info") -> str:
    emoji = _LEVEL_EMOJI.get(level, _LEVEL_EMOJI["info"])
    return f"{emoji} **Telegram Status**: {message}"


def format_timestamp(value: datetime, timezone_name: str = "UTC") -> str:
    """Render a timestamp like ``01/31/2024, 09:05:00 PM`` in the configured zone."""

    try:
        zone = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Unknown timezone %s; using UTC", timezone_name)
        zone = ZoneInfo("UTC")
    return value.astimezone(zone).strftime("%m/%d/%Y, %I:%M:%S %p")


def describe_entity(entity: Any) -> str:
    """Human-friendly name for a Telegram user, chat, or channel."""

    title = getattr(entity, "title", None)
    if title:
        return str(title)
    first = getattr(entity, "first_name", None)
    last = getattr(entity, "last_name", None)
    if first or last:
        return " ".join(part for part in [first, last] if part)
    username = getattr(entity, "username", None)
    if username:
        return f"@{username}"
    phone = getattr(entity, "phone", None)
    if phone:
        return f"+{phone}"
    entity_id = getattr(entity, "id", None)
    return str(entity_id or "Unknown")


def format_forwarded_message(
    message: InboundMessage,
    timezone_name: str = "UTC",
    media: Optional[OutboundMedia] = None,
    media_failed: bool = False,
) -> str:
    """Body of a personal-chat message reposted in a group channel."""

    timestamp = format_timestamp(message.sent_at, timezone_name)
    lines = [f"**{escape_md(message.sender_name)}** *({timestamp})*"]
    text = message.text.strip()
    if text:
        lines.append(text)
    elif media is not None:
        lines.append(f"📎 {media.mime_type} file")
    if media_failed:
        lines.append(MEDIA_FAILED_NOTICE)
    return _clip("\n".join(lines), DISCORD_MESSAGE_LIMIT)


def jump_url(link: TrackedLink) -> str:
    return f"https://discord.com/channels/{link.guild_id}/{link.channel_id}/{link.message_id}"


@dataclass(frozen=True)
class DigestView:
    """Platform-neutral digest layout; the Discord adapter turns it into an embed."""

    title: str
    description: str
    fields: list[tuple[str, str]] = field(default_factory=list)
    footer: Optional[str] = None
    color: int = DIGEST_COLOR


def build_digest_view(links: Sequence[TrackedLink], total: int, cross_guild: bool) -> DigestView:
    title = "📚 Unread Links (All Servers)" if cross_guild else "📚 Unread Links"
    description = (
        f"You have {total} unread link{'s' if total != 1 else ''}. "
        f"React with an entry's symbol to mark it read, or {BULK_EMOJI} to mark all listed links read. "
        "Remove the reaction to mark it unread again."
    )
    fields = []
    for emoji, link in zip(DIGEST_EMOJIS, links):
        channel = link.channel_name or link.channel_id
        name = f"{emoji} From {link.author} in #{channel}"
        posted = link.posted_at.strftime("%Y-%m-%d")
        value = f"[Jump to message]({jump_url(link)})\n{link.url}\nPosted {posted}"
        fields.append((_clip(name, 256), _clip(value, EMBED_FIELD_LIMIT)))
    footer = None
    if total > len(links):
        footer = f"Showing first {len(links)} of {total} unread links"
    return DigestView(title=title, description=description, fields=fields, footer=footer)


def format_status_report(health: dict, mapping_count: int, monitored_count: int, redis_connected: Optional[bool]) -> str:
    """Plain-text report used by the /status command."""

    checks = health.get("checks", {})
    database = checks.get("database", {})
    messenger = checks.get("messenger", {})

    if database.get("success"):
        database_line = f"✅ Connected ({database.get('response_time_ms', '?')} ms)"
    else:
        database_line = f"❌ {database.get('error', 'unavailable')}"

    state = messenger.get("state", "unknown")
    messenger_line = f"{'✅' if messenger.get('connected') else '⚠️'} {state}"
    if messenger.get("device"):
        messenger_line += f" as {messenger['device']}"
    if messenger.get("auth_failures"):
        messenger_line += f" (auth failures {messenger['auth_failures']}/{messenger.get('max_auth_failures')})"

    if redis_connected is None:
        redis_line = "➖ Not configured"
    else:
        redis_line = "✅ Connected" if redis_connected else "⚠️ Unavailable"

    lines = [
        f"**Bridge status**: {health.get('status', 'unknown')}",
        f"**Uptime**: {health.get('uptime_human', '?')}",
        f"**Database**: {database_line}",
        f"**Telegram**: {messenger_line}",
        f"**Redis**: {redis_line}",
        f"**Chat mappings**: {mapping_count}",
        f"**Monitored channels**: {monitored_count}",
    ]
    tables = database.get("tables") or {}
    if tables:
        lines.append("**Rows**: " + ", ".join(f"{name}={count}" for name, count in sorted(tables.items())))
    return "\n".join(lines)


def format_digest_reply(result: DigestResult) -> str:
    """Ephemeral reply to the /unread caller."""

    if result.outcome is DigestOutcome.RATE_LIMITED:
        return f"You're doing that too often. Try again in {max(int(result.retry_after), 1)}s."
    if result.outcome is DigestOutcome.EMPTY:
        return "You're all caught up! No unread links."
    if result.outcome is DigestOutcome.DM_FAILED:
        return "I couldn't DM you. Please allow direct messages from server members and try again."
    if result.shown < result.total:
        return f"Sent you a DM with {result.shown} of your {result.total} unread links."
    return f"Sent you a DM with your {result.total} unread link{'s' if result.total != 1 else ''}."

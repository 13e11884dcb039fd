from __future__ import annotations

from datetime import datetime, timezone

from adapters.notification_formatting import (
    MEDIA_FAILED_NOTICE,
    build_digest_view,
    describe_entity,
    escape_md,
    format_admin_notice,
    format_digest_reply,
    format_forwarded_message,
    format_status_report,
    format_timestamp,
)
from core.digest import DigestOutcome, DigestResult
from core.models import InboundMessage, MediaKind, OutboundMedia, TrackedLink

SENT_AT = datetime(2024, 1, 31, 21, 5, tzinfo=timezone.utc)


class DummyEntity:
    def __init__(self, **values) -> None:
        for name in ("title", "first_name", "last_name", "username", "phone", "id"):
            setattr(self, name, values.get(name))


def _inbound(text: str) -> InboundMessage:
    return InboundMessage(
        chat_id="1",
        message_id="2",
        sender_name="Dana_K",
        text=text,
        kind=MediaKind.IMAGE,
        sent_at=SENT_AT,
    )


def _link(index: int) -> TrackedLink:
    return TrackedLink(
        url=f"https://example.com/{index}",
        message_id=f"m{index}",
        channel_id="c1",
        guild_id="g1",
        author="Alice",
        author_id="alice",
        posted_at=SENT_AT,
        channel_name="links",
    )


def test_escape_md_and_admin_notice() -> None:
    assert escape_md("a_b*c") == "a\\_b\\*c"
    assert format_admin_notice("QR expired", "warning") == "⚠️ **Telegram Status**: QR expired"
    assert format_admin_notice("hello", "unknown").startswith("ℹ️")


def test_format_timestamp_in_configured_zone() -> None:
    assert format_timestamp(SENT_AT) == "01/31/2024, 09:05:00 PM"
    assert format_timestamp(SENT_AT, "America/New_York") == "01/31/2024, 04:05:00 PM"
    assert format_timestamp(SENT_AT, "Not/AZone") == "01/31/2024, 09:05:00 PM"


def test_describe_entity_prefers_title_then_names() -> None:
    assert describe_entity(DummyEntity(title="Team", first_name="x")) == "Team"
    assert describe_entity(DummyEntity(first_name="Dana", last_name="K")) == "Dana K"
    assert describe_entity(DummyEntity(username="dana")) == "@dana"
    assert describe_entity(DummyEntity(phone="15550100")) == "+15550100"
    assert describe_entity(DummyEntity(id=7)) == "7"


def test_forwarded_message_body() -> None:
    body = format_forwarded_message(_inbound("hello"))
    assert body.splitlines() == ["**Dana\\_K** *(01/31/2024, 09:05:00 PM)*", "hello"]

    media = OutboundMedia(data=b"x", filename="image.jpg", mime_type="image/jpeg", kind=MediaKind.IMAGE)
    assert format_forwarded_message(_inbound(""), media=media).endswith("📎 image/jpeg file")
    assert format_forwarded_message(_inbound(""), media_failed=True).endswith(MEDIA_FAILED_NOTICE)


def test_digest_view_lists_entries_and_footer() -> None:
    view = build_digest_view([_link(1), _link(2)], total=30, cross_guild=True)

    assert view.title == "📚 Unread Links (All Servers)"
    assert "30 unread links" in view.description
    name, value = view.fields[0]
    assert name == "1️⃣ From Alice in #links"
    assert "https://discord.com/channels/g1/c1/m1" in value
    assert view.footer == "Showing first 2 of 30 unread links"


def test_digest_reply_for_each_outcome() -> None:
    assert "Try again in 11s" in format_digest_reply(DigestResult(DigestOutcome.RATE_LIMITED, retry_after=11.6))
    assert "caught up" in format_digest_reply(DigestResult(DigestOutcome.EMPTY))
    assert "couldn't DM you" in format_digest_reply(DigestResult(DigestOutcome.DM_FAILED, total=3))
    assert format_digest_reply(DigestResult(DigestOutcome.SENT, total=1, shown=1)) == (
        "Sent you a DM with your 1 unread link."
    )
    assert "25 of your 40" in format_digest_reply(DigestResult(DigestOutcome.SENT, total=40, shown=25))


def test_status_report_lines() -> None:
    health = {
        "status": "degraded",
        "uptime_human": "0d 1h 2m",
        "checks": {
            "database": {"success": True, "response_time_ms": 1.5, "tables": {"tracked_links": 4}},
            "messenger": {"state": "no_session", "connected": False, "auth_failures": 1, "max_auth_failures": 3},
        },
    }

    report = format_status_report(health, mapping_count=2, monitored_count=5, redis_connected=None)

    assert "**Bridge status**: degraded" in report
    assert "✅ Connected (1.5 ms)" in report
    assert "⚠️ no_session (auth failures 1/3)" in report
    assert "➖ Not configured" in report
    assert report.endswith("**Rows**: tracked_links=4")

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from adapters.sqlite_storage import SQLiteStorage
from core.models import (
    ChatChannelMapping,
    DMReactionMapping,
    ForwardDirection,
    ForwardedMessageLink,
    SessionRecord,
    SessionStatus,
    TrackedLink,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "bridge.db"))
    storage.init_db()
    return storage


def _link(message_id: str, *, minutes: int = 0, author_id: str = "alice", guild_id: str = "g1") -> TrackedLink:
    return TrackedLink(
        url=f"https://example.com/{message_id}",
        message_id=message_id,
        channel_id="c1",
        guild_id=guild_id,
        author="Alice",
        author_id=author_id,
        posted_at=NOW + timedelta(minutes=minutes),
    )


def test_upsert_keeps_read_flag(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.upsert_link(_link("m1"))
    assert storage.set_link_read("m1", "g1", True) is True

    storage.upsert_link(_link("m1"))

    assert storage.find_link("m1", "g1").read is True
    assert storage.set_link_read("missing", "g1", True) is False


def test_unread_links_newest_first_excluding_author(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.upsert_link(_link("old", minutes=0))
    storage.upsert_link(_link("new", minutes=5))
    storage.upsert_link(_link("mine", minutes=9, author_id="bob"))
    storage.upsert_link(_link("other-guild", minutes=3, guild_id="g2"))

    assert [link.message_id for link in storage.list_unread_links("bob", "g1")] == ["new", "old"]
    assert [link.message_id for link in storage.list_unread_links("bob")] == ["new", "other-guild", "old"]


def test_delete_link(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.upsert_link(_link("m1"))

    assert storage.delete_link("m1", "g1") is True
    assert storage.find_link("m1", "g1") is None
    assert storage.delete_link("m1", "g1") is False


def test_bulk_dm_mapping_round_trip_and_expiry(tmp_path) -> None:
    storage = _storage(tmp_path)
    bulk = DMReactionMapping("d1", "✅", ("m1", "m2"), "bob", NOW, NOW + timedelta(hours=24))
    single = DMReactionMapping("d1", "1️⃣", "m1", "bob", NOW, NOW + timedelta(hours=1), guild_id="g1")
    storage.save_dm_mapping(bulk)
    storage.save_dm_mapping(single)

    assert storage.find_dm_mapping("d1", "✅") == bulk
    assert storage.find_dm_mapping("d1", "1️⃣") == single

    assert storage.delete_expired_dm_mappings(NOW + timedelta(hours=2)) == 1
    assert storage.find_dm_mapping("d1", "1️⃣") is None


def test_chat_mapping_lookup_both_ways(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.upsert_chat_mapping(ChatChannelMapping("123@personal", "bridge"))
    storage.upsert_chat_mapping(ChatChannelMapping("123@personal", "bridge-2"))

    assert storage.find_mapping_for_chat("123@personal").group_channel_id == "bridge-2"
    assert storage.find_mapping_for_channel("bridge-2").external_chat_id == "123@personal"
    assert storage.find_mapping_for_channel("bridge") is None
    assert len(storage.list_chat_mappings()) == 1


def test_single_active_session(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.save_session(SessionRecord("s-1", SessionStatus.ACTIVE, NOW))
    storage.save_session(SessionRecord("s-2", SessionStatus.ACTIVE, NOW + timedelta(minutes=1), device_info="phone"))

    active = storage.get_active_session()
    assert (active.session_id, active.device_info) == ("s-2", "phone")

    storage.update_session_status("s-2", SessionStatus.DISCONNECTED, "connection lost")
    assert storage.get_active_session() is None
    assert storage.clear_sessions() == 2


def test_latest_session_survives_clean_shutdown(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.save_session(SessionRecord("s-1", SessionStatus.ACTIVE, NOW))
    storage.update_session_status("s-1", SessionStatus.DISCONNECTED, "shutdown")

    latest = storage.get_latest_session()
    assert (latest.session_id, latest.status) == ("s-1", SessionStatus.DISCONNECTED)

    storage.clear_sessions()
    assert storage.get_latest_session() is None


def test_forwarded_links_lookup_and_prune(tmp_path) -> None:
    storage = _storage(tmp_path)
    link = ForwardedMessageLink("123@personal", "77", "bridge", "g-1", ForwardDirection.INBOUND, NOW, sender="Dana")
    storage.save_forwarded_link(link)

    assert storage.find_forwarded_link_by_group_message("g-1") == link
    assert storage.find_forwarded_link_by_external_message("123@personal", "77") == link
    assert storage.delete_forwarded_links_before(NOW - timedelta(days=1)) == 0
    assert storage.delete_forwarded_links_before(NOW + timedelta(seconds=1)) == 1


def test_monitored_channels_and_self_test(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.set_monitored_channel("g1", "c1")
    storage.set_monitored_channel("g1", "c2")
    storage.set_monitored_channel("g1", "c2", active=False)

    assert storage.list_monitored_channels("g1") == {"c1"}

    report = storage.self_test()
    assert report["success"] is True
    assert report["tables"]["monitored_channels"] == 2


def test_multi_part_outbound_message_keeps_one_link_per_part(tmp_path) -> None:
    storage = _storage(tmp_path)
    for external_id in ("501", "502"):
        storage.save_forwarded_link(
            ForwardedMessageLink("123@personal", external_id, "bridge", "g-1", ForwardDirection.OUTBOUND, NOW)
        )

    assert storage.find_forwarded_link_by_external_message("123@personal", "501").group_message_id == "g-1"
    assert storage.find_forwarded_link_by_external_message("123@personal", "502").group_message_id == "g-1"
    assert storage.find_forwarded_link_by_group_message("g-1").external_message_id == "501"
    assert storage.self_test()["tables"]["forwarded_messages"] == 2

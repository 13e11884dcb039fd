"""SQLite storage adapter.

Implements every core persistence port (links, chat mappings, digest
mappings, sessions, forwarded links, monitored channels) on one SQLite file.
Timestamps are stored as UTC ISO-8601 strings so they compare lexically.
"""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import closing
from datetime import datetime, timezone
from typing import Optional

from core.models import (
    ChatChannelMapping,
    DMReactionMapping,
    ForwardDirection,
    ForwardedMessageLink,
    SessionRecord,
    SessionStatus,
    TrackedLink,
)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _parse(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now() -> str:
    return _iso(datetime.now(timezone.utc))


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - tracked_links: URLs from monitored channels with their read flag
        - chat_mappings: personal chat <-> group channel forwarding routes
        - dm_mappings: digest reactions and the links they toggle
        - sessions: personal-messaging session records
        - forwarded_messages: personal/group message id pairs
        - monitored_channels: channels scanned for links per guild
        """

        with closing(self._connect()) as conn, conn:
            conn.execute("PRAGMA journal_mode=WAL")
            # One row per (message_id, guild_id); a message with several URLs
            # keeps the first in url and the full text in content.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tracked_links (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL,
                    content TEXT,
                    channel_id TEXT NOT NULL,
                    channel_name TEXT,
                    author TEXT NOT NULL,
                    author_id TEXT NOT NULL,
                    message_id TEXT NOT NULL,
                    guild_id TEXT NOT NULL,
                    posted_at TIMESTAMP NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (message_id, guild_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tracked_links_unread ON tracked_links (read, guild_id, posted_at)"
            )
            # The primary key keeps a single route per personal chat.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_mappings (
                    external_chat_id TEXT PRIMARY KEY,
                    group_channel_id TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            # payload is a message id, or a JSON list of message ids when is_bulk=1.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS dm_mappings (
                    digest_message_id TEXT NOT NULL,
                    emoji TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    is_bulk INTEGER NOT NULL DEFAULT 0,
                    guild_id TEXT,
                    owner_user_id TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    expires_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (digest_message_id, emoji)
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_dm_mappings_expiry ON dm_mappings (expires_at)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    last_used_at TIMESTAMP NOT NULL,
                    device_info TEXT,
                    notes TEXT,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS forwarded_messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    external_chat_id TEXT NOT NULL,
                    external_message_id TEXT NOT NULL,
                    group_channel_id TEXT NOT NULL,
                    group_message_id TEXT NOT NULL,
                    group_guild_id TEXT,
                    direction TEXT NOT NULL,
                    sender TEXT,
                    content TEXT,
                    created_at TIMESTAMP NOT NULL,
                    UNIQUE (external_chat_id, external_message_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_forwarded_group_message ON forwarded_messages (group_message_id)"
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS monitored_channels (
                    guild_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY (guild_id, channel_id)
                )
                """
            )

    # Tracked links

    def _row_to_link(self, row: sqlite3.Row) -> TrackedLink:
        return TrackedLink(
            url=row["url"],
            message_id=row["message_id"],
            channel_id=row["channel_id"],
            guild_id=row["guild_id"],
            author=row["author"],
            author_id=row["author_id"],
            posted_at=_parse(row["posted_at"]),
            read=bool(row["read"]),
            channel_name=row["channel_name"],
            content=row["content"] or "",
        )

    def upsert_link(self, link: TrackedLink) -> None:
        """Insert a link; a replayed message refreshes its text but keeps the read flag."""

        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO tracked_links (
                    url, content, channel_id, channel_name, author, author_id,
                    message_id, guild_id, posted_at, read
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(message_id, guild_id) DO UPDATE SET
                    url = excluded.url,
                    content = excluded.content,
                    channel_name = excluded.channel_name
                """,
                (
                    link.url,
                    link.content,
                    link.channel_id,
                    link.channel_name,
                    link.author,
                    link.author_id,
                    link.message_id,
                    link.guild_id,
                    _iso(link.posted_at),
                    int(link.read),
                ),
            )

    def find_link(self, message_id: str, guild_id: str) -> Optional[TrackedLink]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM tracked_links WHERE message_id = ? AND guild_id = ?",
                (message_id, guild_id),
            ).fetchone()
        return self._row_to_link(row) if row else None

    def find_link_by_message(self, message_id: str) -> Optional[TrackedLink]:
        """Find a link by message id alone (digest entries may span guilds)."""

        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM tracked_links WHERE message_id = ? ORDER BY id LIMIT 1",
                (message_id,),
            ).fetchone()
        return self._row_to_link(row) if row else None

    def set_link_read(self, message_id: str, guild_id: str, read: bool) -> bool:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "UPDATE tracked_links SET read = ? WHERE message_id = ? AND guild_id = ?",
                (int(read), message_id, guild_id),
            )
            return cur.rowcount > 0

    def delete_link(self, message_id: str, guild_id: str) -> bool:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "DELETE FROM tracked_links WHERE message_id = ? AND guild_id = ?",
                (message_id, guild_id),
            )
            return cur.rowcount > 0

    def list_unread_links(self, exclude_author_id: str, guild_id: Optional[str] = None) -> list[TrackedLink]:
        """Unread links not posted by ``exclude_author_id``, newest first."""

        query = "SELECT * FROM tracked_links WHERE read = 0 AND author_id != ?"
        params: list[str] = [exclude_author_id]
        if guild_id is not None:
            query += " AND guild_id = ?"
            params.append(guild_id)
        query += " ORDER BY posted_at DESC, id DESC"
        with closing(self._connect()) as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_link(row) for row in rows]

    # Chat mappings

    def _row_to_mapping(self, row: sqlite3.Row) -> ChatChannelMapping:
        return ChatChannelMapping(
            external_chat_id=row["external_chat_id"],
            group_channel_id=row["group_channel_id"],
            active=bool(row["active"]),
        )

    def upsert_chat_mapping(self, mapping: ChatChannelMapping) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO chat_mappings (external_chat_id, group_channel_id, active, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(external_chat_id) DO UPDATE SET
                    group_channel_id = excluded.group_channel_id,
                    active = excluded.active,
                    updated_at = excluded.updated_at
                """,
                (mapping.external_chat_id, mapping.group_channel_id, int(mapping.active), _now()),
            )

    def find_mapping_for_chat(self, chat_id: str) -> Optional[ChatChannelMapping]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM chat_mappings WHERE external_chat_id = ?",
                (chat_id,),
            ).fetchone()
        return self._row_to_mapping(row) if row else None

    def find_mapping_for_channel(self, channel_id: str) -> Optional[ChatChannelMapping]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                """
                SELECT * FROM chat_mappings WHERE group_channel_id = ?
                ORDER BY active DESC, updated_at DESC LIMIT 1
                """,
                (channel_id,),
            ).fetchone()
        return self._row_to_mapping(row) if row else None

    def list_chat_mappings(self) -> list[ChatChannelMapping]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT * FROM chat_mappings ORDER BY external_chat_id").fetchall()
        return [self._row_to_mapping(row) for row in rows]

    # Digest reaction mappings

    def save_dm_mapping(self, mapping: DMReactionMapping) -> None:
        payload = json.dumps(list(mapping.payload)) if mapping.is_bulk else mapping.payload
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO dm_mappings (
                    digest_message_id, emoji, payload, is_bulk, guild_id,
                    owner_user_id, created_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(digest_message_id, emoji) DO UPDATE SET
                    payload = excluded.payload,
                    is_bulk = excluded.is_bulk,
                    guild_id = excluded.guild_id,
                    owner_user_id = excluded.owner_user_id,
                    created_at = excluded.created_at,
                    expires_at = excluded.expires_at
                """,
                (
                    mapping.digest_message_id,
                    mapping.emoji,
                    payload,
                    int(mapping.is_bulk),
                    mapping.guild_id,
                    mapping.owner_user_id,
                    _iso(mapping.created_at),
                    _iso(mapping.expires_at),
                ),
            )

    def find_dm_mapping(self, digest_message_id: str, emoji: str) -> Optional[DMReactionMapping]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM dm_mappings WHERE digest_message_id = ? AND emoji = ?",
                (digest_message_id, emoji),
            ).fetchone()
        if row is None:
            return None
        payload = tuple(json.loads(row["payload"])) if row["is_bulk"] else row["payload"]
        return DMReactionMapping(
            digest_message_id=row["digest_message_id"],
            emoji=row["emoji"],
            payload=payload,
            owner_user_id=row["owner_user_id"],
            created_at=_parse(row["created_at"]),
            expires_at=_parse(row["expires_at"]),
            guild_id=row["guild_id"],
        )

    def delete_dm_mapping(self, digest_message_id: str, emoji: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "DELETE FROM dm_mappings WHERE digest_message_id = ? AND emoji = ?",
                (digest_message_id, emoji),
            )

    def delete_expired_dm_mappings(self, now: datetime) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute("DELETE FROM dm_mappings WHERE expires_at <= ?", (_iso(now),))
            return cur.rowcount

    # Sessions

    def get_active_session(self) -> Optional[SessionRecord]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE status = ? ORDER BY last_used_at DESC LIMIT 1",
                (SessionStatus.ACTIVE.value,),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def get_latest_session(self) -> Optional[SessionRecord]:
        """Most recent session that may still be restorable (not expired or cleared)."""

        with closing(self._connect()) as conn:
            row = conn.execute(
                """
                SELECT * FROM sessions WHERE status NOT IN (?, ?)
                ORDER BY last_used_at DESC LIMIT 1
                """,
                (SessionStatus.EXPIRED.value, SessionStatus.CLEARED.value),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def _row_to_session(self, row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            session_id=row["session_id"],
            status=SessionStatus(row["status"]),
            last_used_at=_parse(row["last_used_at"]),
            device_info=row["device_info"] or "",
            notes=row["notes"] or "",
        )

    def save_session(self, record: SessionRecord) -> None:
        """Upsert a session; saving an active one expires any other active row."""

        with closing(self._connect()) as conn, conn:
            if record.status is SessionStatus.ACTIVE:
                conn.execute(
                    "UPDATE sessions SET status = ? WHERE status = ? AND session_id != ?",
                    (SessionStatus.EXPIRED.value, SessionStatus.ACTIVE.value, record.session_id),
                )
            conn.execute(
                """
                INSERT INTO sessions (session_id, status, last_used_at, device_info, notes, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    status = excluded.status,
                    last_used_at = excluded.last_used_at,
                    device_info = excluded.device_info,
                    notes = excluded.notes
                """,
                (
                    record.session_id,
                    record.status.value,
                    _iso(record.last_used_at),
                    record.device_info,
                    record.notes,
                    _now(),
                ),
            )

    def update_session_status(self, session_id: str, status: SessionStatus, notes: str = "") -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                "UPDATE sessions SET status = ?, notes = ?, last_used_at = ? WHERE session_id = ?",
                (status.value, notes, _now(), session_id),
            )

    def clear_sessions(self) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute(
                "UPDATE sessions SET status = ?, notes = ? WHERE status != ?",
                (SessionStatus.CLEARED.value, "force-cleared", SessionStatus.CLEARED.value),
            )
            return cur.rowcount

    # Forwarded message links

    def _row_to_forwarded(self, row: sqlite3.Row) -> ForwardedMessageLink:
        return ForwardedMessageLink(
            external_chat_id=row["external_chat_id"],
            external_message_id=row["external_message_id"],
            group_channel_id=row["group_channel_id"],
            group_message_id=row["group_message_id"],
            direction=ForwardDirection(row["direction"]),
            created_at=_parse(row["created_at"]),
            group_guild_id=row["group_guild_id"],
            sender=row["sender"] or "",
            content=row["content"] or "",
        )

    def save_forwarded_link(self, link: ForwardedMessageLink) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO forwarded_messages (
                    external_chat_id, external_message_id, group_channel_id,
                    group_message_id, group_guild_id, direction, sender, content, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(external_chat_id, external_message_id) DO UPDATE SET
                    group_channel_id = excluded.group_channel_id,
                    group_message_id = excluded.group_message_id
                """,
                (
                    link.external_chat_id,
                    link.external_message_id,
                    link.group_channel_id,
                    link.group_message_id,
                    link.group_guild_id,
                    link.direction.value,
                    link.sender,
                    link.content,
                    _iso(link.created_at),
                ),
            )

    def find_forwarded_link_by_group_message(self, group_message_id: str) -> Optional[ForwardedMessageLink]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM forwarded_messages WHERE group_message_id = ? ORDER BY id LIMIT 1",
                (group_message_id,),
            ).fetchone()
        return self._row_to_forwarded(row) if row else None

    def find_forwarded_link_by_external_message(
        self, external_chat_id: str, external_message_id: str
    ) -> Optional[ForwardedMessageLink]:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT * FROM forwarded_messages WHERE external_chat_id = ? AND external_message_id = ?",
                (external_chat_id, external_message_id),
            ).fetchone()
        return self._row_to_forwarded(row) if row else None

    def delete_forwarded_links_before(self, cutoff: datetime) -> int:
        with closing(self._connect()) as conn, conn:
            cur = conn.execute("DELETE FROM forwarded_messages WHERE created_at < ?", (_iso(cutoff),))
            return cur.rowcount

    # Monitored channels

    def set_monitored_channel(self, guild_id: str, channel_id: str, active: bool = True) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO monitored_channels (guild_id, channel_id, active)
                VALUES (?, ?, ?)
                ON CONFLICT(guild_id, channel_id) DO UPDATE SET active = excluded.active
                """,
                (guild_id, channel_id, int(active)),
            )

    def list_monitored_channels(self, guild_id: str) -> set[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT channel_id FROM monitored_channels WHERE guild_id = ? AND active = 1",
                (guild_id,),
            ).fetchall()
        return {row["channel_id"] for row in rows}

    # Health

    def self_test(self) -> dict:
        """Round-trip the database and report latency and row counts."""

        started = time.perf_counter()
        try:
            with closing(self._connect()) as conn:
                conn.execute("SELECT 1").fetchone()
                counts = {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                    for table in (
                        "tracked_links",
                        "chat_mappings",
                        "dm_mappings",
                        "sessions",
                        "forwarded_messages",
                        "monitored_channels",
                    )
                }
        except sqlite3.Error as error:
            return {"success": False, "error": str(error)}
        return {
            "success": True,
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "tables": counts,
        }

from __future__ import annotations

import asyncio
import dataclasses
from datetime import datetime, timezone
from typing import Optional

from fakes import MemoryStore, RecordingNotifier

from core.config import SessionConfig
from core.errors import LoginTimeout
from core.models import ChatChannelMapping, DisconnectReason, SessionRecord, SessionStatus
from core.session import (
    NOT_CONNECTED_NOTICE,
    STILL_UNAUTHENTICATED_NOTICE,
    SessionLifecycleManager,
    SessionState,
    StartupProbe,
)

FAST = SessionConfig(
    max_auth_failures=3,
    max_restart_attempts=10,
    qr_grace_seconds=0.05,
    teardown_delay=0,
    restart_delay=0,
    reconnect_delay=0,
    alert_cooldown=0,
    on_demand_quiet_seconds=0,
    connect_attempts=1,
)


class FakeSessionClient:
    def __init__(self, authorized: list[bool], disconnects: Optional[list[object]] = None) -> None:
        self.authorized = list(authorized)
        self.disconnects = list(disconnects or [])
        self.manager: Optional[SessionLifecycleManager] = None
        self.connects = 0
        self.teardowns = 0
        self.qr_logins = 0
        self.login_error: Optional[Exception] = None
        self.release: Optional[asyncio.Event] = None

    async def connect(self) -> bool:
        self.connects += 1
        return self.authorized.pop(0) if self.authorized else True

    async def login_with_qr(self, on_qr) -> None:
        self.qr_logins += 1
        await on_qr("tg://login?token=abc")
        if self.login_error is not None:
            raise self.login_error

    async def wait_disconnected(self) -> DisconnectReason:
        if not self.disconnects:
            if self.release is not None:
                await self.release.wait()
            await self.manager.stop()
            return DisconnectReason.CONNECTION_LOST
        return self.disconnects.pop(0)

    async def teardown(self) -> None:
        self.teardowns += 1

    async def describe_device(self) -> str:
        return "Bridge Account (id 42)"


class FakeCredentials:
    def __init__(self, present: bool = False) -> None:
        self.present = present
        self.clears = 0
        self.force_clears = 0

    def exists(self) -> bool:
        return self.present

    async def clear(self) -> None:
        self.clears += 1
        self.present = False

    async def force_clear(self) -> None:
        self.force_clears += 1
        self.present = False


class FakeSessionStore:
    def __init__(self, record: Optional[SessionRecord] = None) -> None:
        self.records: dict[str, SessionRecord] = {}
        if record is not None:
            self.records[record.session_id] = record
        self.clear_calls = 0

    def get_active_session(self) -> Optional[SessionRecord]:
        for record in self.records.values():
            if record.status is SessionStatus.ACTIVE:
                return record
        return None

    def get_latest_session(self) -> Optional[SessionRecord]:
        for record in reversed(list(self.records.values())):
            if record.status not in (SessionStatus.EXPIRED, SessionStatus.CLEARED):
                return record
        return None

    def save_session(self, record: SessionRecord) -> None:
        self.records[record.session_id] = record

    def update_session_status(self, session_id: str, status: SessionStatus, notes: str = "") -> None:
        if session_id in self.records:
            self.records[session_id] = dataclasses.replace(self.records[session_id], status=status, notes=notes)

    def clear_sessions(self) -> int:
        self.clear_calls += 1
        count = len(self.records)
        self.records = {
            key: dataclasses.replace(record, status=SessionStatus.CLEARED) for key, record in self.records.items()
        }
        return count


def _record() -> SessionRecord:
    return SessionRecord("s-1", SessionStatus.ACTIVE, datetime(2024, 5, 1, tzinfo=timezone.utc))


def _manager(
    client, credentials, store, notifier, config: SessionConfig = FAST, mappings=None
) -> SessionLifecycleManager:
    manager = SessionLifecycleManager(
        client, credentials, store, notifier, config, qr_renderer=lambda token: b"png", mappings=mappings
    )
    client.manager = manager
    return manager


def _qr_notices(notifier: RecordingNotifier) -> list:
    return [notice for notice in notifier.notices if notice[2] is not None]


def test_startup_probe_classification() -> None:
    notifier = RecordingNotifier()

    async def scenario() -> list[StartupProbe]:
        results = []
        for present, record in [(True, _record()), (True, None), (False, _record()), (False, None)]:
            manager = _manager(FakeSessionClient([]), FakeCredentials(present), FakeSessionStore(record), notifier)
            results.append(await manager.probe())
        return results

    assert asyncio.run(scenario()) == [
        StartupProbe.RESTORE,
        StartupProbe.RESTORE_UNTRACKED,
        StartupProbe.ORPHANED,
        StartupProbe.FRESH,
    ]


def test_orphaned_record_is_marked_expired() -> None:
    store = FakeSessionStore(_record())
    manager = _manager(FakeSessionClient([]), FakeCredentials(False), store, RecordingNotifier())

    asyncio.run(manager.probe())

    assert store.records["s-1"].status is SessionStatus.EXPIRED


def test_three_logged_out_disconnects_force_clear_once() -> None:
    client = FakeSessionClient([])
    credentials = FakeCredentials(True)
    store = FakeSessionStore(_record())
    manager = _manager(client, credentials, store, RecordingNotifier())

    async def scenario() -> list[SessionState]:
        states = []
        for _ in range(3):
            await manager.handle_logged_out()
            states.append(manager.state)
        return states

    states = asyncio.run(scenario())

    assert states == [SessionState.DEGRADED, SessionState.DEGRADED, SessionState.CLEARED]
    assert credentials.clears == 2
    assert credentials.force_clears == 1
    assert store.clear_calls == 1
    assert manager.auth_failures == 0
    assert client.teardowns == 3


def test_restart_ceiling_waits_for_manual_login() -> None:
    config = dataclasses.replace(FAST, max_auth_failures=10, max_restart_attempts=1)
    notifier = RecordingNotifier()
    manager = _manager(FakeSessionClient([]), FakeCredentials(True), FakeSessionStore(), notifier, config)

    async def scenario() -> list[str]:
        first = await manager.handle_logged_out()
        second = await manager.handle_logged_out()
        return [first.value, second.value]

    assert asyncio.run(scenario()) == ["reopen", "await_login"]
    assert manager.state is SessionState.FAILED
    assert "/telegram_auth" in notifier.notices[-1][0]


def test_qr_for_restoring_session_waits_for_grace_window() -> None:
    notifier = RecordingNotifier()
    manager = _manager(FakeSessionClient([]), FakeCredentials(True), FakeSessionStore(_record()), notifier)

    async def scenario() -> None:
        await manager.probe()
        await manager.on_qr("tg://login?token=abc")
        assert _qr_notices(notifier) == []
        await manager.on_connected(is_new_login=False)
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert _qr_notices(notifier) == []
    assert manager.state is SessionState.CONNECTED
    assert "restored session" in notifier.notices[-1][0]


def test_qr_surfaces_after_grace_window_expires() -> None:
    notifier = RecordingNotifier()
    manager = _manager(FakeSessionClient([]), FakeCredentials(True), FakeSessionStore(_record()), notifier)

    async def scenario() -> None:
        await manager.probe()
        await manager.on_qr("tg://login?token=abc")
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    messages = [notice[0] for notice in notifier.notices]
    assert "Session restoration failed. A new login is required." in messages[0]
    assert _qr_notices(notifier)[0][3] == "telegram-login-qr.png"


def test_fresh_login_surfaces_qr_immediately_and_connects() -> None:
    client = FakeSessionClient([False])
    notifier = RecordingNotifier()
    store = FakeSessionStore()
    manager = _manager(client, FakeCredentials(False), store, notifier)

    asyncio.run(manager.run())

    assert client.qr_logins == 1
    assert len(_qr_notices(notifier)) == 1
    assert any("new session" in notice[0] for notice in notifier.notices)
    saved = list(store.records.values())
    assert len(saved) == 1
    assert saved[0].device_info == "Bridge Account (id 42)"


def test_connection_loss_reconnects_with_existing_material() -> None:
    client = FakeSessionClient([True, True], [DisconnectReason.CONNECTION_LOST])
    credentials = FakeCredentials(True)
    notifier = RecordingNotifier()
    manager = _manager(client, credentials, FakeSessionStore(_record()), notifier)

    asyncio.run(manager.run())

    assert client.connects == 2
    assert credentials.clears == 0
    assert credentials.force_clears == 0
    assert any("Disconnected (temporary)" in notice[0] for notice in notifier.notices)


def test_login_timeout_waits_for_on_demand_request() -> None:
    client = FakeSessionClient([False])
    client.login_error = LoginTimeout("not scanned")
    notifier = RecordingNotifier()
    manager = _manager(client, FakeCredentials(False), FakeSessionStore(), notifier)

    async def scenario() -> None:
        task = asyncio.create_task(manager.run())
        await asyncio.sleep(0.05)
        assert manager.state is SessionState.NO_SESSION
        await manager.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    assert any("expired before it was scanned" in notice[0] for notice in notifier.notices)


def test_on_demand_login_refused_while_connected() -> None:
    client = FakeSessionClient([])
    manager = _manager(client, FakeCredentials(True), FakeSessionStore(_record()), RecordingNotifier())

    async def scenario() -> tuple[bool, str]:
        await manager.on_connected(is_new_login=False)
        return await manager.request_fresh_login()

    accepted, message = asyncio.run(scenario())

    assert accepted is False
    assert "already connected" in message


def test_on_demand_login_clears_local_material() -> None:
    client = FakeSessionClient([])
    credentials = FakeCredentials(True)
    manager = _manager(client, credentials, FakeSessionStore(), RecordingNotifier())

    accepted, _ = asyncio.run(manager.request_fresh_login())

    assert accepted is True
    assert credentials.clears == 1
    assert client.teardowns == 1


def test_clean_shutdown_is_restored_on_next_start() -> None:
    store = FakeSessionStore(_record())
    credentials = FakeCredentials(True)
    first = FakeSessionClient([True])
    asyncio.run(_manager(first, credentials, store, RecordingNotifier()).run())
    assert store.records["s-1"].status is SessionStatus.DISCONNECTED

    second = FakeSessionClient([True])
    notifier = RecordingNotifier()
    manager = _manager(second, credentials, store, notifier)

    assert asyncio.run(manager.probe()) is StartupProbe.RESTORE

    asyncio.run(manager.run())

    assert credentials.force_clears == 0
    assert store.clear_calls == 0
    assert list(store.records) == ["s-1"]
    assert any("restored session" in notice[0] for notice in notifier.notices)


def test_shutdown_session_revoked_meanwhile_asks_for_login_without_force_clear() -> None:
    store = FakeSessionStore(dataclasses.replace(_record(), status=SessionStatus.DISCONNECTED))
    credentials = FakeCredentials(True)
    client = FakeSessionClient([False])
    notifier = RecordingNotifier()

    asyncio.run(_manager(client, credentials, store, notifier).run())

    assert credentials.force_clears == 0
    assert store.clear_calls == 0
    assert client.qr_logins == 1


def test_stream_restart_reconnects_without_clearing() -> None:
    client = FakeSessionClient([True, True], [DisconnectReason.STREAM_RESTART_REQUIRED])
    credentials = FakeCredentials(True)
    store = FakeSessionStore(_record())
    notifier = RecordingNotifier()
    manager = _manager(client, credentials, store, notifier)

    asyncio.run(manager.run())

    assert client.connects == 2
    assert client.qr_logins == 0
    assert (credentials.clears, credentials.force_clears, store.clear_calls) == (0, 0, 0)
    assert manager.auth_failures == 0
    assert not any("Disconnected (temporary)" in notice[0] for notice in notifier.notices)


def test_unusable_untracked_credentials_are_force_cleared_before_login() -> None:
    client = FakeSessionClient([False, False])
    credentials = FakeCredentials(True)
    store = FakeSessionStore()
    notifier = RecordingNotifier()
    manager = _manager(client, credentials, store, notifier)

    asyncio.run(manager.run())

    assert credentials.force_clears == 1
    assert store.clear_calls == 1
    assert client.connects == 2
    assert client.qr_logins == 1
    # Nothing restorable is left, so the QR code is not held back.
    assert len(_qr_notices(notifier)) == 1
    assert any("new session" in notice[0] for notice in notifier.notices)


def test_admin_is_reminded_until_connected() -> None:
    config = dataclasses.replace(FAST, startup_notice_delay=0.01, reminder_interval=0.02)
    client = FakeSessionClient([False])
    client.login_error = LoginTimeout("not scanned")
    notifier = RecordingNotifier()
    manager = _manager(client, FakeCredentials(False), FakeSessionStore(), notifier, config)

    async def scenario() -> None:
        task = asyncio.create_task(manager.run())
        await asyncio.sleep(0.1)
        await manager.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    messages = [notice[0] for notice in notifier.notices]
    assert messages.count(NOT_CONNECTED_NOTICE) == 1
    assert messages.count(STILL_UNAUTHENTICATED_NOTICE) >= 1


def test_no_reminder_once_connected() -> None:
    config = dataclasses.replace(FAST, startup_notice_delay=0.02, reminder_interval=0.02)
    client = FakeSessionClient([True])
    notifier = RecordingNotifier()
    manager = _manager(client, FakeCredentials(True), FakeSessionStore(_record()), notifier, config)

    async def scenario() -> None:
        client.release = asyncio.Event()
        task = asyncio.create_task(manager.run())
        await asyncio.sleep(0.1)
        client.release.set()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    messages = [notice[0] for notice in notifier.notices]
    assert NOT_CONNECTED_NOTICE not in messages
    assert STILL_UNAUTHENTICATED_NOTICE not in messages


def test_chat_summary_posted_once_per_connection_run() -> None:
    mappings = MemoryStore()
    mappings.chat_mappings["-1001234567890"] = ChatChannelMapping("-1001234567890", "444")
    mappings.chat_mappings["99@personal"] = ChatChannelMapping("99@personal", "555", active=False)
    client = FakeSessionClient([True, True], [DisconnectReason.CONNECTION_LOST])
    notifier = RecordingNotifier()
    manager = _manager(client, FakeCredentials(True), FakeSessionStore(_record()), notifier, mappings=mappings)

    asyncio.run(manager.run())

    summaries = [notice[0] for notice in notifier.notices if "Chat Monitoring Summary" in notice[0]]
    assert len(summaries) == 1
    assert "Monitoring **1** chat(s):" in summaries[0]
    assert "`-1001234567890` → <#444>" in summaries[0]
    assert "99@personal" not in summaries[0]


def test_no_chat_summary_without_active_mappings() -> None:
    notifier = RecordingNotifier()
    manager = _manager(
        FakeSessionClient([True]), FakeCredentials(True), FakeSessionStore(_record()), notifier, mappings=MemoryStore()
    )

    asyncio.run(manager.run())

    assert not any("Chat Monitoring Summary" in notice[0] for notice in notifier.notices)

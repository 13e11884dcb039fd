"""Personal-messaging session lifecycle.

The manager drives one loop: connect with local material, authenticate by QR
when needed, watch the connection, classify the disconnect, and recover.
Recovery escalates with consecutive LoggedOut disconnects: local material is
cleared first and everything is force-cleared once the failure ceiling is
reached. A restart ceiling bounds the whole loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from core.config import SessionConfig
from core.errors import ConnectionClosed, LoginTimeout
from core.models import DisconnectReason, SessionRecord, SessionStatus
from core.ports import (
    ChatMappingPort,
    CredentialStorePort,
    MessengerSessionPort,
    NotifierPort,
    SessionStorePort,
)
from core.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

QR_INSTRUCTIONS = (
    "Scan this QR code to link the bridge account:\n"
    "1. Open Telegram on your phone\n"
    "2. Go to Settings > Devices > Link Desktop Device\n"
    "3. Point your phone at this image"
)

NOT_CONNECTED_NOTICE = "Not connected after startup. If this persists, use `/telegram_auth` to re-link the account."
STILL_UNAUTHENTICATED_NOTICE = "Still not authenticated. Use `/telegram_auth` to generate a QR code."


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    DEGRADED = "degraded"
    CLEARED = "cleared"
    FAILED = "failed"


class StartupProbe(str, Enum):
    RESTORE = "restore"
    RESTORE_UNTRACKED = "restore_untracked"
    ORPHANED = "orphaned"
    FRESH = "fresh"


class _Next(Enum):
    REOPEN = "reopen"
    AWAIT_LOGIN = "await_login"
    STOP = "stop"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, ConnectionClosed) and error.reason is DisconnectReason.CONNECTION_LOST


class AlertThrottle:
    """Drop repeated admin alerts with the same key inside a cooldown."""

    def __init__(self, cooldown: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._cooldown = cooldown
        self._clock = clock
        self._last_sent: dict[str, float] = {}

    def allow(self, key: str) -> bool:
        now = self._clock()
        last = self._last_sent.get(key)
        if last is not None and now - last < self._cooldown:
            return False
        self._last_sent[key] = now
        return True


class SessionLifecycleManager:
    def __init__(
        self,
        client: MessengerSessionPort,
        credentials: CredentialStorePort,
        sessions: SessionStorePort,
        notifier: NotifierPort,
        config: SessionConfig,
        qr_renderer: Callable[[str], bytes],
        mappings: Optional[ChatMappingPort] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._sessions = sessions
        self._notifier = notifier
        self._config = config
        self._render_qr = qr_renderer
        self._mappings = mappings
        self._clock = clock
        self._alerts = AlertThrottle(config.alert_cooldown, clock)
        self._connect_policy = RetryPolicy(
            max_attempts=config.connect_attempts,
            delay=config.reconnect_delay,
            backoff=2.0,
            retry_on=_is_transient,
            name="Messenger connect",
        )

        # Single authoritative counter for consecutive LoggedOut disconnects.
        self.auth_failures = 0
        self.restart_attempts = 0

        self._state = SessionState.NO_SESSION
        self._connected = asyncio.Event()
        self._login_requested = asyncio.Event()
        self._recovery_lock = asyncio.Lock()
        self._grace_task: Optional[asyncio.Task] = None
        self._reminder_task: Optional[asyncio.Task] = None
        self._summary_sent = False
        self._session_id: Optional[str] = None
        self._device_info = ""
        self._connected_at: Optional[datetime] = None
        self._plausible = False
        self._untracked_restore = False
        self._on_demand = False
        self._qr_surfaced = False
        self._latest_qr: Optional[str] = None
        self._quiet_until = 0.0
        self._stopping = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    async def wait_connected(self) -> None:
        await self._connected.wait()

    def snapshot(self) -> dict:
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "session_id": self._session_id,
            "device": self._device_info or None,
            "connected_at": self._connected_at.isoformat() if self._connected_at else None,
            "auth_failures": self.auth_failures,
            "max_auth_failures": self._config.max_auth_failures,
            "restart_attempts": self.restart_attempts,
            "max_restart_attempts": self._config.max_restart_attempts,
        }

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            LOGGER.info("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        if state is SessionState.CONNECTED:
            self._connected.set()
        else:
            self._connected.clear()

    async def probe(self) -> StartupProbe:
        """Classify local credential material against the persisted session row."""

        has_local = self._credentials.exists()
        # A clean shutdown leaves the row "disconnected"; it is still restorable.
        record = self._sessions.get_latest_session()

        if has_local and record is not None:
            LOGGER.info("Restoring session %s from local credentials", record.session_id)
            self._session_id = record.session_id
            self._plausible = True
            self._untracked_restore = False
            return StartupProbe.RESTORE
        if has_local:
            LOGGER.info("Local credentials found without a session record; attempting restore")
            self._plausible = True
            self._untracked_restore = True
            return StartupProbe.RESTORE_UNTRACKED
        if record is not None:
            LOGGER.warning("Session %s has no local credentials; marking it expired", record.session_id)
            self._sessions.update_session_status(
                record.session_id, SessionStatus.EXPIRED, notes="no local credential material"
            )
        self._plausible = False
        self._untracked_restore = False
        return StartupProbe.ORPHANED if record is not None else StartupProbe.FRESH

    async def run(self) -> None:
        """Run the connection loop until ``stop()`` is called."""

        await self.probe()
        self._reminder_task = asyncio.create_task(self._remind_until_connected())
        step = _Next.REOPEN
        try:
            while not self._stopping:
                if step is _Next.AWAIT_LOGIN:
                    await self._login_requested.wait()
                    self._login_requested.clear()
                    if self._stopping:
                        break
                elif step is _Next.STOP:
                    break
                step = await self._open_once()
        finally:
            self._cancel_reminder()
        LOGGER.info("Session loop stopped in state %s", self._state.value)

    async def _open_once(self) -> _Next:
        try:
            authorized = await self._connect_policy.run(self._client.connect)
            if not authorized and self._untracked_restore:
                LOGGER.warning("Local credentials are unusable; discarding them")
                await self._client.teardown()
                await self.force_clear()
                self._untracked_restore = False
                self._plausible = False
                authorized = await self._connect_policy.run(self._client.connect)
            is_new_login = not authorized
            if not authorized:
                self._set_state(SessionState.AUTHENTICATING)
                await self._client.login_with_qr(self.on_qr)
            await self.on_connected(is_new_login)
            reason = await self._client.wait_disconnected()
        except LoginTimeout:
            return await self._on_login_timeout()
        except ConnectionClosed as closed:
            LOGGER.warning("Messenger connection closed: %s (%s)", closed.reason.value, closed.detail)
            reason = closed.reason
        return await self.on_disconnected(reason)

    async def on_qr(self, token: str) -> None:
        """Surface a QR token now, or after the grace window when restoring."""

        self._latest_qr = token
        self._set_state(SessionState.AUTHENTICATING)
        if self._on_demand or self._qr_surfaced or not self._plausible:
            await self._surface_qr(token)
            return
        if self._grace_task is None or self._grace_task.done():
            LOGGER.info("Holding QR code for %.0fs while the session restores", self._config.qr_grace_seconds)
            self._grace_task = asyncio.create_task(self._surface_after_grace())

    async def _surface_after_grace(self) -> None:
        await asyncio.sleep(self._config.qr_grace_seconds)
        if self.is_connected or self._latest_qr is None:
            return
        await self._notify("Session restoration failed. A new login is required.", "warning")
        await self._surface_qr(self._latest_qr)

    async def _surface_qr(self, token: str) -> None:
        self._qr_surfaced = True
        self._on_demand = False
        try:
            image = self._render_qr(token)
        except Exception:
            LOGGER.exception("Could not render QR image; sending the login URL as text")
            await self._notify(f"{QR_INSTRUCTIONS}\n\nLogin URL: {token}", "warning")
            return
        await self._notify(QR_INSTRUCTIONS, "info", image=image, filename="telegram-login-qr.png")

    def _cancel_grace_timer(self) -> None:
        if self._grace_task is not None and not self._grace_task.done():
            self._grace_task.cancel()
        self._grace_task = None

    async def _remind_until_connected(self) -> None:
        """Warn the admin channel if no connection is up shortly after startup, then hourly."""

        await asyncio.sleep(self._config.startup_notice_delay)
        if self.is_connected:
            return
        await self._alert("not_connected", NOT_CONNECTED_NOTICE, "warning")
        while True:
            await asyncio.sleep(self._config.reminder_interval)
            if self.is_connected:
                return
            await self._alert("still_unauthenticated", STILL_UNAUTHENTICATED_NOTICE, "warning")

    def _cancel_reminder(self) -> None:
        if self._reminder_task is not None and not self._reminder_task.done():
            self._reminder_task.cancel()
        self._reminder_task = None

    async def on_connected(self, is_new_login: bool) -> None:
        self._cancel_grace_timer()
        self._cancel_reminder()
        self.auth_failures = 0
        self.restart_attempts = 0
        self._qr_surfaced = False
        self._on_demand = False
        self._latest_qr = None
        self._untracked_restore = False
        self._plausible = True

        try:
            self._device_info = await self._client.describe_device()
        except Exception:
            LOGGER.warning("Could not describe the linked device", exc_info=True)
            self._device_info = ""
        self._connected_at = _utcnow()
        self._persist_active()
        self._set_state(SessionState.CONNECTED)

        kind = "new session" if is_new_login else "restored session"
        LOGGER.info("Messenger connected (%s) %s", kind, self._device_info)
        await self._notify(f"Authenticated successfully ({kind}). Bridge is connected and ready.", "info")
        if is_new_login or not self._summary_sent:
            await self._send_chat_summary()

    async def _send_chat_summary(self) -> None:
        if self._mappings is None:
            return
        try:
            active = [mapping for mapping in self._mappings.list_chat_mappings() if mapping.active]
        except Exception:
            LOGGER.exception("Could not load chat mappings for the monitoring summary")
            return
        self._summary_sent = True
        LOGGER.info("Monitoring %s active chat(s)", len(active))
        if not active:
            return
        lines = ["**Chat Monitoring Summary**", "", f"Monitoring **{len(active)}** chat(s):"]
        for mapping in active:
            lines.append(f"• `{mapping.external_chat_id}` → <#{mapping.group_channel_id}>")
        await self._notify("\n".join(lines), "info")

    def _persist_active(self) -> None:
        record = self._sessions.get_active_session()
        if record is not None:
            self._session_id = record.session_id
        if self._session_id is None:
            self._session_id = uuid.uuid4().hex
        try:
            self._sessions.save_session(
                SessionRecord(
                    session_id=self._session_id,
                    status=SessionStatus.ACTIVE,
                    last_used_at=_utcnow(),
                    device_info=self._device_info,
                )
            )
        except Exception:
            LOGGER.exception("Could not persist session %s", self._session_id)

    def _mark_session(self, status: SessionStatus, notes: str = "") -> None:
        if self._session_id is None:
            return
        try:
            self._sessions.update_session_status(self._session_id, status, notes)
        except Exception:
            LOGGER.exception("Could not update session %s to %s", self._session_id, status.value)

    async def on_disconnected(self, reason: DisconnectReason) -> _Next:
        self._cancel_grace_timer()
        self._set_state(SessionState.DISCONNECTED)
        if self._stopping:
            await self._client.teardown()
            return _Next.STOP

        if reason is DisconnectReason.LOGGED_OUT:
            return await self.handle_logged_out()

        await self._client.teardown()
        if reason is DisconnectReason.STREAM_RESTART_REQUIRED:
            LOGGER.warning("Stream restart required; reconnecting with existing credentials")
            self._set_state(SessionState.RECONNECTING)
            await asyncio.sleep(self._config.reconnect_delay)
            return _Next.REOPEN

        self._mark_session(SessionStatus.DISCONNECTED, notes=reason.value)
        await self._alert(
            "connection_lost",
            "Disconnected (temporary). Reconnecting automatically.",
            "warning",
        )
        self._set_state(SessionState.RECONNECTING)
        await asyncio.sleep(self._config.reconnect_delay)
        return _Next.REOPEN

    async def handle_logged_out(self) -> _Next:
        """Escalating recovery for a LoggedOut disconnect.

        Only one recovery runs at a time; a concurrent call is ignored.
        """

        if self._recovery_lock.locked():
            LOGGER.info("Recovery already in progress; ignoring duplicate LoggedOut")
            return _Next.STOP

        async with self._recovery_lock:
            self.auth_failures += 1
            attempt = self.auth_failures
            LOGGER.error(
                "Authentication failed: logged out (attempt %s/%s)",
                attempt,
                self._config.max_auth_failures,
            )
            self._mark_session(SessionStatus.FAILED, notes="logged out")
            await self._client.teardown()
            await asyncio.sleep(self._config.teardown_delay)

            if self.auth_failures >= self._config.max_auth_failures:
                await self.force_clear()
                self.auth_failures = 0
                self._set_state(SessionState.CLEARED)
            else:
                await self._credentials.clear()
                self._set_state(SessionState.DEGRADED)
            self._plausible = False
            self._untracked_restore = False

            await self._alert(
                "auth_failed",
                f"Authentication failed: logged out (attempt {attempt}/{self._config.max_auth_failures})",
                "error",
            )

        await asyncio.sleep(self._config.restart_delay)
        self.restart_attempts += 1
        if self.restart_attempts > self._config.max_restart_attempts:
            LOGGER.error("Restart ceiling reached (%s); giving up", self._config.max_restart_attempts)
            self._set_state(SessionState.FAILED)
            await self._notify(
                "Session recovery stopped after too many restarts. Use `/telegram_auth` to log in again.",
                "error",
            )
            return _Next.AWAIT_LOGIN
        LOGGER.info(
            "Re-initializing session (restart %s/%s)",
            self.restart_attempts,
            self._config.max_restart_attempts,
        )
        return _Next.REOPEN

    async def force_clear(self) -> None:
        """Discard all local and persisted session state. Never raises."""

        LOGGER.warning("Force-clearing all session state")
        try:
            await self._credentials.force_clear()
        except Exception:
            LOGGER.exception("Credential cleanup failed")
        try:
            cleared = self._sessions.clear_sessions()
            LOGGER.info("Marked %s session record(s) cleared", cleared)
        except Exception:
            LOGGER.exception("Could not clear persisted sessions")
        self._session_id = None
        self._device_info = ""

    async def _on_login_timeout(self) -> _Next:
        self._cancel_grace_timer()
        await self._client.teardown()
        self._set_state(SessionState.NO_SESSION)
        await self._alert(
            "qr_expired",
            "The login QR code expired before it was scanned. Use `/telegram_auth` to request a new one.",
            "warning",
        )
        return _Next.AWAIT_LOGIN

    async def request_fresh_login(self) -> tuple[bool, str]:
        """Start an on-demand QR login from the admin channel."""

        if self.is_connected:
            return False, "Telegram is already connected."
        if self._recovery_lock.locked():
            return False, "A recovery is already in progress; try again shortly."

        LOGGER.info("On-demand login requested")
        self._on_demand = True
        self._quiet_until = self._clock() + self._config.on_demand_quiet_seconds
        self.restart_attempts = 0
        self.auth_failures = 0
        self._plausible = False
        await self._client.teardown()
        await self._credentials.clear()
        if self._state in (SessionState.NO_SESSION, SessionState.FAILED):
            self._login_requested.set()
        return True, "Generating a new QR code. It will be posted in this channel."

    async def stop(self) -> None:
        self._stopping = True
        self._cancel_grace_timer()
        self._cancel_reminder()
        self._login_requested.set()
        self._mark_session(SessionStatus.DISCONNECTED, notes="shutdown")
        await self._client.teardown()

    def _alerts_suppressed(self) -> bool:
        return self._stopping or self._on_demand or self._clock() < self._quiet_until

    async def _alert(self, key: str, message: str, level: str) -> None:
        if self._alerts_suppressed():
            LOGGER.info("Suppressed admin alert: %s", message)
            return
        if not self._alerts.allow(key):
            LOGGER.debug("Alert %s is cooling down", key)
            return
        await self._notify(message, level)

    async def _notify(
        self,
        message: str,
        level: str,
        image: Optional[bytes] = None,
        filename: str = "image.png",
    ) -> None:
        try:
            await self._notifier.notify(message, level, image=image, filename=filename)
        except Exception:
            LOGGER.exception("Admin notification failed")

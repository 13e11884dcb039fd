"""Telethon adapter for the personal-messaging side.

Implements both the session port (connect, QR login, disconnect watching,
teardown) and the outbound messenger port (text, media, reactions, media
download) on top of one TelegramClient. Telethon errors never leave this
module unclassified: connection failures surface as ``ConnectionClosed``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import io
import logging
from typing import Awaitable, Callable, Optional, Union

from telethon import TelegramClient, errors, events
from telethon.tl.functions.messages import SendReactionRequest
from telethon.tl.types import ReactionEmoji

from adapters.notification_formatting import describe_entity
from adapters.telegram_mapper import build_inbound_message
from core.errors import ConnectionClosed, LoginTimeout, MediaUnavailable
from core.models import DisconnectReason, InboundMessage, MediaKind, OutboundMedia
from core.ports import QrCallback

LOGGER = logging.getLogger(__name__)

MessageCallback = Callable[[InboundMessage], Awaitable[None]]

# The platform no longer accepts this authorization.
LOGGED_OUT_ERRORS = (
    errors.UnauthorizedError,
    errors.AuthKeyDuplicatedError,
    errors.PasswordHashInvalidError,
)


def classify_disconnect(error: BaseException) -> DisconnectReason:
    if isinstance(error, ConnectionClosed):
        return error.reason
    if isinstance(error, LOGGED_OUT_ERRORS):
        return DisconnectReason.LOGGED_OUT
    if isinstance(error, errors.InvalidDCError):
        return DisconnectReason.STREAM_RESTART_REQUIRED
    return DisconnectReason.CONNECTION_LOST


def _peer(chat_id: str) -> Union[int, str]:
    text = str(chat_id).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return text


class TelegramMessenger:
    def __init__(
        self,
        client_factory: Callable[[], TelegramClient],
        password: Optional[str] = None,
        qr_rounds: int = 5,
        keepalive_seconds: float = 30.0,
    ) -> None:
        self._factory = client_factory
        self._password = password
        self._qr_rounds = qr_rounds
        self._keepalive_seconds = keepalive_seconds
        self._client: Optional[TelegramClient] = None
        self._handlers: list[MessageCallback] = []
        self._forced_reason: Optional[DisconnectReason] = None

    @property
    def client(self) -> Optional[TelegramClient]:
        return self._client

    def add_message_handler(self, callback: MessageCallback) -> None:
        self._handlers.append(callback)

    def _require_client(self) -> TelegramClient:
        if self._client is None or not self._client.is_connected():
            raise ConnectionError("Telegram client is not connected")
        return self._client

    async def _on_new_message(self, event) -> None:
        try:
            inbound = await build_inbound_message(event.message)
            for handler in self._handlers:
                await handler(inbound)
        except Exception:
            LOGGER.exception("Error while processing Telegram message")

    # Session port

    async def connect(self) -> bool:
        if self._client is None:
            self._client = self._factory()
            # Both directions; bridged copies are filtered by their forwarded links.
            self._client.add_event_handler(self._on_new_message, events.NewMessage())
        self._forced_reason = None
        try:
            await self._client.connect()
            return await self._client.is_user_authorized()
        except Exception as error:
            raise ConnectionClosed(classify_disconnect(error), str(error)) from error

    async def login_with_qr(self, on_qr: QrCallback) -> None:
        client = self._require_client()
        try:
            qr = await client.qr_login()
            for round_number in range(1, self._qr_rounds + 1):
                await on_qr(qr.url)
                try:
                    await qr.wait()
                    LOGGER.info("QR login accepted")
                    return
                except asyncio.TimeoutError:
                    LOGGER.info("QR code expired unscanned (round %s/%s)", round_number, self._qr_rounds)
                    await qr.recreate()
        except errors.SessionPasswordNeededError:
            await self._sign_in_with_password(client)
            return
        except Exception as error:
            raise ConnectionClosed(classify_disconnect(error), str(error)) from error
        raise LoginTimeout(f"QR code not scanned after {self._qr_rounds} rounds")

    async def _sign_in_with_password(self, client: TelegramClient) -> None:
        if not self._password:
            raise ConnectionClosed(
                DisconnectReason.LOGGED_OUT,
                "two-step verification password required (set TELEGRAM_2FA)",
            )
        try:
            await client.sign_in(password=self._password)
        except Exception as error:
            raise ConnectionClosed(classify_disconnect(error), str(error)) from error

    async def wait_disconnected(self) -> DisconnectReason:
        client = self._require_client()
        keepalive = asyncio.create_task(self._keepalive(client))
        try:
            await client.run_until_disconnected()
        except Exception as error:
            reason = classify_disconnect(error)
            LOGGER.warning("Telegram connection ended (%s): %s", reason.value, error)
            return reason
        finally:
            keepalive.cancel()
        return self._forced_reason or DisconnectReason.CONNECTION_LOST

    async def _keepalive(self, client: TelegramClient) -> None:
        while True:
            await asyncio.sleep(self._keepalive_seconds)
            try:
                await client.get_me()
            except LOGGED_OUT_ERRORS as error:
                LOGGER.error("Telegram rejected the session: %s", error)
                self._forced_reason = DisconnectReason.LOGGED_OUT
                await client.disconnect()
                return
            except Exception as error:
                LOGGER.warning("Telegram health check failed: %s", error)

    async def teardown(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception:
            LOGGER.warning("Error while disconnecting the Telegram client", exc_info=True)
        try:
            # Release the SQLite handle on the session file before it is removed.
            client.session.close()
        except Exception:
            LOGGER.debug("Session file already closed", exc_info=True)

    async def describe_device(self) -> str:
        me = await self._require_client().get_me()
        name = describe_entity(me)
        username = getattr(me, "username", None)
        if username:
            return f"{name} (@{username}, id {me.id})"
        return f"{name} (id {me.id})"

    # Messenger port

    async def send_text(self, chat_id: str, text: str) -> Optional[str]:
        sent = await self._require_client().send_message(_peer(chat_id), text)
        return str(sent.id) if sent is not None else None

    async def send_media(self, chat_id: str, media: OutboundMedia) -> Optional[str]:
        payload = io.BytesIO(media.data)
        payload.name = media.filename
        sent = await self._require_client().send_file(
            _peer(chat_id),
            payload,
            caption=media.caption or None,
            force_document=media.kind is MediaKind.DOCUMENT,
        )
        if isinstance(sent, list):
            sent = sent[0] if sent else None
        return str(sent.id) if sent is not None else None

    async def send_reaction(self, chat_id: str, message_id: str, symbol: str) -> bool:
        """Set (or clear, with an empty symbol) this account's reaction on a message."""

        client = self._require_client()
        reaction = [ReactionEmoji(emoticon=symbol)] if symbol else []
        try:
            await client(
                SendReactionRequest(
                    peer=await client.get_input_entity(_peer(chat_id)),
                    msg_id=int(message_id),
                    reaction=reaction,
                )
            )
        except errors.ReactionInvalidError:
            LOGGER.warning("Telegram does not accept %r as a reaction", symbol)
            return False
        return True

    async def download_media(self, message: InboundMessage) -> bytes:
        if message.raw is None:
            raise MediaUnavailable(f"No media handle for {message.chat_id}/{message.message_id}")
        data = await self._require_client().download_media(message.raw, file=bytes)
        if not data:
            raise MediaUnavailable(f"Empty media for {message.chat_id}/{message.message_id}")
        return data

    async def refresh_media(self, message: InboundMessage) -> InboundMessage:
        """Fetch the message again so its file reference is current."""

        raw = message.raw
        if raw is None:
            raise MediaUnavailable(f"No media handle for {message.chat_id}/{message.message_id}")
        refreshed = await self._require_client().get_messages(raw.peer_id, ids=raw.id)
        if refreshed is None:
            raise MediaUnavailable(f"Message {message.chat_id}/{message.message_id} is gone")
        return dataclasses.replace(message, raw=refreshed)

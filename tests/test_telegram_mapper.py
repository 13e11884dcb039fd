from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from telethon.tl.types import MessageActionChatEditTitle, MessageActionSecureValuesSent

from adapters.telegram_mapper import build_inbound_message, classify_content
from core.models import MediaKind


class DummySender:
    def __init__(self, first_name: "str | None" = None, username: "str | None" = None) -> None:
        self.first_name = first_name
        self.last_name = None
        self.username = username
        self.title = None


class DummyFile:
    def __init__(self, name: "str | None", mime_type: "str | None") -> None:
        self.name = name
        self.mime_type = mime_type


class DummyMessage:
    def __init__(
        self,
        *,
        text: str = "hello",
        sender: "DummySender | None" = None,
        out: bool = False,
        action=None,
        file: "DummyFile | None" = None,
        **media,
    ) -> None:
        self.chat_id = 123
        self.id = 10
        self.sender_id = 99
        self.raw_text = text
        self.out = out
        self.action = action
        self.file = file
        self.date = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._sender = sender
        for name, value in media.items():
            setattr(self, name, value)

    async def get_sender(self):
        return self._sender


def test_classify_content_by_payload() -> None:
    assert classify_content(DummyMessage()) is MediaKind.TEXT
    assert classify_content(DummyMessage(photo=object())) is MediaKind.IMAGE
    assert classify_content(DummyMessage(gif=object(), document=object())) is MediaKind.VIDEO
    assert classify_content(DummyMessage(voice=object(), document=object())) is MediaKind.AUDIO
    assert classify_content(DummyMessage(document=object())) is MediaKind.DOCUMENT


def test_build_inbound_text_message() -> None:
    message = DummyMessage(text="hi there", sender=DummySender(first_name="Dana"))

    inbound = asyncio.run(build_inbound_message(message))

    assert (inbound.chat_id, inbound.message_id) == ("123", "10")
    assert inbound.sender_name == "Dana"
    assert inbound.text == "hi there"
    assert inbound.kind is MediaKind.TEXT
    assert inbound.is_protocol is False
    assert inbound.raw is message


def test_build_inbound_document_keeps_file_metadata() -> None:
    message = DummyMessage(
        text="",
        sender=DummySender(username="dana"),
        document=object(),
        file=DummyFile("report.pdf", "application/pdf"),
    )

    inbound = asyncio.run(build_inbound_message(message))

    assert inbound.sender_name == "@dana"
    assert inbound.kind is MediaKind.DOCUMENT
    assert (inbound.filename, inbound.mime_type) == ("report.pdf", "application/pdf")


def test_outgoing_and_unknown_senders() -> None:
    assert asyncio.run(build_inbound_message(DummyMessage(out=True))).sender_name == "You"
    assert asyncio.run(build_inbound_message(DummyMessage())).sender_name == "99"


def test_service_actions_are_flagged() -> None:
    edited = DummyMessage(text="", action=MessageActionChatEditTitle(title="New"))
    handoff = DummyMessage(text="", action=MessageActionSecureValuesSent(types=[]))

    edited_inbound = asyncio.run(build_inbound_message(edited))
    handoff_inbound = asyncio.run(build_inbound_message(handoff))

    assert edited_inbound.is_protocol is True
    assert edited_inbound.is_key_exchange is False
    assert handoff_inbound.is_key_exchange is True

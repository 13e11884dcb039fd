"""Exceptions raised across the core/adapter boundary."""

from __future__ import annotations

from core.models import DisconnectReason


class ConnectionClosed(Exception):
    """The personal-messaging connection ended with a classified reason."""

    def __init__(self, reason: DisconnectReason, detail: str = "") -> None:
        super().__init__(detail or reason.value)
        self.reason = reason
        self.detail = detail


class LoginTimeout(Exception):
    """No QR code was scanned within the allowed number of rounds."""


class MediaUnavailable(Exception):
    """The messaging client returned no bytes for a media message."""

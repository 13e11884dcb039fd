from __future__ import annotations

from telethon import errors

from adapters.telegram_messenger import classify_disconnect
from core.errors import ConnectionClosed
from core.models import DisconnectReason


def test_revoked_authorization_is_logged_out() -> None:
    assert classify_disconnect(errors.UnauthorizedError(None, "AUTH_KEY_UNREGISTERED")) is DisconnectReason.LOGGED_OUT
    assert classify_disconnect(errors.AuthKeyDuplicatedError(request=None)) is DisconnectReason.LOGGED_OUT


def test_data_center_migration_restarts_the_stream() -> None:
    error = errors.InvalidDCError(None, "PHONE_MIGRATE_2")

    assert classify_disconnect(error) is DisconnectReason.STREAM_RESTART_REQUIRED


def test_network_failures_are_temporary() -> None:
    assert classify_disconnect(ConnectionError("reset by peer")) is DisconnectReason.CONNECTION_LOST
    assert classify_disconnect(OSError("network unreachable")) is DisconnectReason.CONNECTION_LOST


def test_already_classified_closures_keep_their_reason() -> None:
    closed = ConnectionClosed(DisconnectReason.LOGGED_OUT, "two-step verification password required")

    assert classify_disconnect(closed) is DisconnectReason.LOGGED_OUT

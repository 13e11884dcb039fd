from __future__ import annotations

import asyncio
import errno
import logging
import os

from adapters.session_files import SessionFileStore, is_contention_error
from core.retry import RetryPolicy


def _busy_session_file(monkeypatch, failures: int) -> list[str]:
    """Make removing ``bridge.session`` fail with EBUSY ``failures`` times."""

    calls: list[str] = []
    real_remove = os.remove

    def remove(path, *args, **kwargs):
        if str(path).endswith("bridge.session"):
            calls.append(str(path))
            if len(calls) <= failures:
                raise OSError(errno.EBUSY, "Device or resource busy")
        return real_remove(path, *args, **kwargs)

    monkeypatch.setattr(os, "remove", remove)
    return calls


def test_exists_requires_non_empty_session_file(tmp_path) -> None:
    store = SessionFileStore(str(tmp_path / "sessions"), "bridge")
    store.ensure_directory()
    assert store.exists() is False

    (tmp_path / "sessions" / "bridge.session").write_bytes(b"")
    assert store.exists() is False

    (tmp_path / "sessions" / "bridge.session").write_bytes(b"auth")
    assert store.exists() is True
    assert store.session_path == str(tmp_path / "sessions" / "bridge")


def test_clear_keeps_directory(tmp_path) -> None:
    directory = tmp_path / "sessions"
    store = SessionFileStore(str(directory), "bridge")
    store.ensure_directory()
    (directory / "bridge.session").write_bytes(b"auth")
    (directory / "bridge.session-journal").write_bytes(b"j")
    (directory / "nested").mkdir()

    asyncio.run(store.clear())

    assert directory.is_dir()
    assert list(directory.iterdir()) == []


def test_force_clear_recreates_missing_directory(tmp_path) -> None:
    directory = tmp_path / "sessions"
    store = SessionFileStore(str(directory), "bridge", RetryPolicy(max_attempts=1, delay=0))

    asyncio.run(store.force_clear())

    assert directory.is_dir()


def test_contention_errors() -> None:
    assert is_contention_error(OSError(errno.EBUSY, "busy"))
    assert not is_contention_error(OSError(errno.ENOENT, "missing"))
    assert not is_contention_error(ValueError("nope"))


def test_force_clear_retries_through_brief_contention(tmp_path, monkeypatch, caplog) -> None:
    directory = tmp_path / "sessions"
    policy = RetryPolicy(max_attempts=3, delay=0, retry_on=is_contention_error)
    store = SessionFileStore(str(directory), "bridge", policy)
    store.ensure_directory()
    (directory / "bridge.session").write_bytes(b"auth")
    calls = _busy_session_file(monkeypatch, failures=1)

    with caplog.at_level(logging.WARNING):
        asyncio.run(store.force_clear())

    assert len(calls) == 2
    assert list(directory.iterdir()) == []
    assert "Giving up on" not in caplog.text


def test_force_clear_falls_back_to_per_item_removal(tmp_path, monkeypatch, caplog) -> None:
    directory = tmp_path / "sessions"
    policy = RetryPolicy(max_attempts=2, delay=0, retry_on=is_contention_error)
    store = SessionFileStore(str(directory), "bridge", policy)
    store.ensure_directory()
    (directory / "bridge.session").write_bytes(b"auth")
    (directory / "bridge.session-journal").write_bytes(b"j")
    calls = _busy_session_file(monkeypatch, failures=10)

    with caplog.at_level(logging.WARNING):
        asyncio.run(store.force_clear())

    # Two bulk attempts, then one per-item attempt.
    assert len(calls) == 3
    assert [entry.name for entry in directory.iterdir()] == ["bridge.session"]
    assert "removing entries one by one" in caplog.text
    assert "Giving up on" in caplog.text
    assert directory.is_dir()

"""Local Telethon session material.

The session lives in a dedicated directory (``<dir>/<name>.session`` plus its
journal). Clearing removes the directory contents but keeps the directory so
the client can be rebuilt in place.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import shutil
from typing import Optional

from core.retry import RetryPolicy

LOGGER = logging.getLogger(__name__)

_CONTENTION_ERRNOS = {
    getattr(errno, name) for name in ("EBUSY", "EACCES", "EPERM", "ETXTBSY") if hasattr(errno, name)
}


def is_contention_error(error: BaseException) -> bool:
    return isinstance(error, OSError) and error.errno in _CONTENTION_ERRNOS


class SessionFileStore:
    def __init__(self, directory: str, name: str, retry_policy: Optional[RetryPolicy] = None) -> None:
        self._directory = directory
        self._name = name
        self._retry = retry_policy or RetryPolicy(
            max_attempts=3,
            delay=1.0,
            backoff=2.0,
            retry_on=is_contention_error,
            name="Session cleanup",
        )

    @property
    def session_path(self) -> str:
        """Path handed to Telethon (it appends ``.session`` itself)."""

        return os.path.join(self._directory, self._name)

    def ensure_directory(self) -> None:
        os.makedirs(self._directory, exist_ok=True)

    def exists(self) -> bool:
        path = f"{self.session_path}.session"
        return os.path.isfile(path) and os.path.getsize(path) > 0

    def _entries(self) -> list[str]:
        if not os.path.isdir(self._directory):
            return []
        return [os.path.join(self._directory, entry) for entry in os.listdir(self._directory)]

    @staticmethod
    def _remove(path: str) -> None:
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.remove(path)

    async def clear(self) -> None:
        """Remove local credential material, logging entries that cannot be removed."""

        removed = 0
        for path in self._entries():
            try:
                await asyncio.to_thread(self._remove, path)
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as error:
                LOGGER.warning("Could not remove %s: %s", path, error)
        self.ensure_directory()
        LOGGER.info("Cleared %s local session file(s) in %s", removed, self._directory)

    async def _remove_all(self) -> None:
        for path in self._entries():
            try:
                await asyncio.to_thread(self._remove, path)
            except FileNotFoundError:
                continue

    async def force_clear(self) -> None:
        """Remove everything with retries; fall back to per-item deletion. Never raises."""

        try:
            await self._retry.run(self._remove_all)
        except Exception as error:
            LOGGER.warning("Bulk session cleanup failed (%s); removing entries one by one", error)
            for path in self._entries():
                try:
                    await asyncio.to_thread(self._remove, path)
                except FileNotFoundError:
                    continue
                except OSError as item_error:
                    LOGGER.error("Giving up on %s: %s", path, item_error)
        try:
            self.ensure_directory()
        except OSError:
            LOGGER.exception("Could not recreate session directory %s", self._directory)
        LOGGER.info("Force-cleared session directory %s", self._directory)

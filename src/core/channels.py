"""Monitored-channel lookup with a TTL cache.

The cache is refreshed on expiry and can be invalidated early by the
cross-process signal; correctness never depends on that signal.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from core.ports import MonitoredChannelPort

LOGGER = logging.getLogger(__name__)


class MonitoredChannels:
    def __init__(
        self,
        store: MonitoredChannelPort,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, set[str]]] = {}

    def channels_for(self, guild_id: str) -> set[str]:
        now = self._clock()
        cached = self._cache.get(guild_id)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]
        channels = set(self._store.list_monitored_channels(guild_id))
        self._cache[guild_id] = (now, channels)
        return channels

    def is_monitored(self, guild_id: Optional[str], channel_id: str) -> bool:
        if guild_id is None:
            return False
        return channel_id in self.channels_for(guild_id)

    def invalidate(self, guild_id: Optional[str] = None) -> None:
        if guild_id is None:
            self._cache.clear()
        else:
            self._cache.pop(guild_id, None)
        LOGGER.info("Monitored channel cache invalidated (%s)", guild_id or "all guilds")

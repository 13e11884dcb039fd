"""Background cleanup of expired digest mappings and old forwarded links."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from core.config import MaintenanceConfig

LOGGER = logging.getLogger(__name__)


class MaintenanceStore(Protocol):
    def delete_expired_dm_mappings(self, now: datetime) -> int:
        ...

    def delete_forwarded_links_before(self, cutoff: datetime) -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MaintenanceLoop:
    """Runs the sweeps in worker threads so event handlers are never blocked."""

    def __init__(
        self,
        store: MaintenanceStore,
        config: MaintenanceConfig,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    async def sweep_dm_mappings(self) -> int:
        removed = await asyncio.to_thread(self._store.delete_expired_dm_mappings, self._clock())
        if removed:
            LOGGER.info("Removed %s expired digest mapping(s)", removed)
        return removed

    async def prune_forwarded_links(self) -> int:
        cutoff = self._clock() - timedelta(days=self._config.forwarded_retention_days)
        removed = await asyncio.to_thread(self._store.delete_forwarded_links_before, cutoff)
        if removed:
            LOGGER.info("Pruned %s forwarded link(s) older than %s days", removed, self._config.forwarded_retention_days)
        return removed

    async def run(self) -> None:
        elapsed_since_prune = self._config.retention_interval_seconds
        while True:
            try:
                await self.sweep_dm_mappings()
                if elapsed_since_prune >= self._config.retention_interval_seconds:
                    await self.prune_forwarded_links()
                    elapsed_since_prune = 0.0
            except Exception:
                LOGGER.exception("Maintenance sweep failed")
            await asyncio.sleep(self._config.sweep_interval_seconds)
            elapsed_since_prune += self._config.sweep_interval_seconds

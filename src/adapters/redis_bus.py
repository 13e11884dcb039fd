"""Best-effort Redis pub/sub signal for monitored-channel changes.

The CLI publishes ``{"guildId": ...}`` on ``monitored.invalidate`` after it
edits the monitored channels; the running bot drops the matching cache entry.
Redis being absent or down only delays the refresh until the cache TTL.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Callable, Optional

import redis.asyncio as redis

LOGGER = logging.getLogger(__name__)

INVALIDATE_CHANNEL = "monitored.invalidate"

InvalidateCallback = Callable[[Optional[str]], None]


def decode_invalidation(data) -> Optional[str]:
    """Guild id carried by an invalidation message (None means every guild)."""

    text = data.decode("utf-8") if isinstance(data, bytes) else data
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        LOGGER.warning("Ignoring malformed invalidation payload: %r", text)
        return None
    guild_id = payload.get("guildId") if isinstance(payload, dict) else None
    return str(guild_id) if guild_id is not None else None


class RedisInvalidationBus:
    def __init__(self, url: str, channel: str = INVALIDATE_CHANNEL, max_backoff: float = 30.0) -> None:
        self._url = url
        self._channel = channel
        self._max_backoff = max_backoff
        self._client: Optional[redis.Redis] = None
        self._listener: Optional[asyncio.Task] = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._url)
        return self._client

    async def publish(self, guild_id: Optional[str]) -> bool:
        message = json.dumps({"guildId": guild_id})
        try:
            receivers = await self._redis().publish(self._channel, message)
        except (redis.RedisError, OSError) as error:
            LOGGER.warning("Could not publish invalidation for guild %s: %s", guild_id, error)
            return False
        LOGGER.info("Published invalidation for guild %s to %s subscriber(s)", guild_id, receivers)
        return True

    def start(self, on_invalidate: InvalidateCallback) -> None:
        if self._listener is None or self._listener.done():
            self._listener = asyncio.create_task(self._listen(on_invalidate), name="redis-invalidation")

    async def _listen(self, on_invalidate: InvalidateCallback) -> None:
        backoff = 1.0
        while True:
            pubsub = self._redis().pubsub()
            try:
                await pubsub.subscribe(self._channel)
                self._connected = True
                backoff = 1.0
                LOGGER.info("Listening for invalidations on %s", self._channel)
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    if message and message.get("type") == "message":
                        guild_id = decode_invalidation(message["data"])
                        LOGGER.debug("Invalidating monitored channels for guild %s", guild_id)
                        on_invalidate(guild_id)
            except asyncio.CancelledError:
                raise
            except (redis.RedisError, OSError) as error:
                self._connected = False
                LOGGER.warning("Redis listener error: %s. Retrying in %.0fs", error, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, self._max_backoff)
            finally:
                self._connected = False
                try:
                    await pubsub.aclose()
                except (redis.RedisError, OSError):
                    LOGGER.debug("Error closing pubsub", exc_info=True)

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

"""Named event handlers registered per event type.

Platform adapters translate their callbacks into a single ``dispatch`` call;
every handler runs inside its own error boundary so one bad event cannot
stop the bridge or starve the other handlers for the same event.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable

LOGGER = logging.getLogger(__name__)

GROUP_MESSAGE = "group.message"
GROUP_REACTION_ADDED = "group.reaction_added"
GROUP_REACTION_REMOVED = "group.reaction_removed"
MESSENGER_MESSAGE = "messenger.message"

Handler = Callable[[Any], Awaitable[None]]


class EventDispatcher:
    def __init__(self) -> None:
        self._handlers: dict[str, list[tuple[str, Handler]]] = defaultdict(list)

    def register(self, event_type: str, handler: Handler, name: str = "") -> None:
        label = name or getattr(handler, "__qualname__", repr(handler))
        self._handlers[event_type].append((label, handler))

    def handlers(self, event_type: str) -> list[str]:
        return [label for label, _ in self._handlers.get(event_type, [])]

    async def dispatch(self, event_type: str, event: Any) -> int:
        """Run every handler for ``event_type`` in registration order.

        Returns the number of handlers that raised.
        """

        failures = 0
        for label, handler in self._handlers.get(event_type, []):
            try:
                await handler(event)
            except Exception:
                failures += 1
                LOGGER.exception("Handler %s failed for %s", label, event_type)
        return failures

"""EventBus — domain events the presentation layer subscribes to.

The core never touches a rendering surface. It emits events instead, and
delivery is fire-and-forget: a failing subscriber is logged and never
interrupts the emitter.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

MEMORY_CHANGED = "memory_changed"
MESSAGE_APPENDED = "message_appended"
MESSAGE_UPDATED = "message_updated"
MESSAGE_REMOVED = "message_removed"
STREAMING_DELTA = "streaming_delta"
GENERATION_ENDED = "generation_ended"
NOTIFICATION = "notification"

EVENT_NAMES = frozenset({
    MEMORY_CHANGED,
    MESSAGE_APPENDED,
    MESSAGE_UPDATED,
    MESSAGE_REMOVED,
    STREAMING_DELTA,
    GENERATION_ENDED,
    NOTIFICATION,
})


class EventBus:
    """Dispatches named events to registered handlers.

    Handlers are plain callables receiving keyword arguments. One bus is
    created per application and handed to each component explicitly.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def subscribe(self, event: str, handler: Callable[..., Any]) -> None:
        """Register *handler* for *event*. Raises ValueError on unknown names."""
        if event not in EVENT_NAMES:
            msg = f"Unknown event '{event}'"
            raise ValueError(msg)
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Callable[..., Any]) -> bool:
        """Remove a handler. Returns True if it was registered."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event: str, **payload: Any) -> None:
        """Deliver *payload* to every handler of *event*."""
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(**payload)
            except Exception:
                logger.exception("Event handler failed for %s", event)

    def notify(self, message: str, level: str = "info") -> None:
        """Emit a user-facing notification (toast)."""
        self.emit(NOTIFICATION, message=message, level=level)

"""Synchronous status event dispatch.

Handlers are called on the thread that ingested the message, in the order
they subscribed, and in emission order for a given printer (ingestion is
serialised per printer). A handler that raises is logged and skipped; it
never affects other handlers or the ingestion that produced the event.

Handlers that need to do I/O should hand the event off to their own queue or
event loop rather than block here.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Tuple

from .event_types import StatusEvent

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[StatusEvent], None]


class EventBus:
    """Fan-out of :class:`StatusEvent` to registered handlers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: Tuple[EventHandler, ...] = ()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""

        with self._lock:
            self._handlers = self._handlers + (handler,)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: EventHandler) -> bool:
        with self._lock:
            handlers: List[EventHandler] = list(self._handlers)
            try:
                handlers.remove(handler)
            except ValueError:
                return False
            self._handlers = tuple(handlers)
        return True

    def publish(self, event: StatusEvent) -> int:
        """Deliver ``event`` to every handler; return how many succeeded."""

        # Handlers may (un)subscribe from inside a callback, so iterate over
        # the tuple captured here.
        handlers = self._handlers
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                LOGGER.exception(
                    "Status event handler %r failed for %s", handler, event
                )
                continue
            delivered += 1

        LOGGER.debug(
            "Published %s event for %s to %d handler(s)",
            event.kind.value,
            event.printer_id,
            delivered,
        )
        return delivered

    def __len__(self) -> int:
        return len(self._handlers)

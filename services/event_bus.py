"""
In-process publish/subscribe for domain events.

The core publishes after a change is persisted; presentation layers (socket
broadcaster, dashboard notifications) subscribe by event type. A subscriber that
raises is logged and skipped: a broken dashboard must never undo a committed
stock change or order transition.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, DefaultDict, List, Type

from domain.events import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        """Register `handler` for `event_type` and its subclasses."""

        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = [
                handler
                for event_type, registered in self._handlers.items()
                if isinstance(event, event_type)
                for handler in registered
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", event.name)


__all__ = ["EventBus", "Handler"]

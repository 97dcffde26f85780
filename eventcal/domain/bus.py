"""Synchronous in-process bus for calendar change notifications."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable


class EventBus:
    """Publish/subscribe bus for domain events.

    Handlers run synchronously in registration order. A handler subscribed
    to a base class also receives every subclass of it, after the handlers
    registered for the concrete type.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Callable) -> None:
        self._subscribers[event_type].append(handler)

    def publish(self, event: Any) -> None:
        for cls in type(event).__mro__:
            for handler in self._subscribers.get(cls, []):
                handler(event)

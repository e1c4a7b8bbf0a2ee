from __future__ import annotations

import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from salespipe.context import get_correlation_id

EventHandler = Callable[[dict[str, Any]], None]

published_events: list[dict[str, Any]] = []


class EventBus:
    """Synchronous in-process dispatch keyed by event type; "*" receives everything."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def dispatch(self, envelope: dict[str, Any]) -> None:
        event_type = envelope.get("event_type")
        handlers = [*self._handlers.get(str(event_type), []), *self._handlers.get("*", [])]
        for handler in handlers:
            handler(envelope)


event_bus = EventBus()


def publish(event_type: str, payload: dict[str, Any], *, actor_user_id: str | None = None) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "actor_user_id": actor_user_id,
        "correlation_id": get_correlation_id(),
        "payload": payload,
    }
    published_events.append(envelope)
    event_bus.dispatch(envelope)
    return envelope

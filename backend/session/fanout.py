"""
Typed publish/subscribe registry for inbound application messages.

Guarantees:
- Many-to-many: any number of callbacks per event type; one callback may be
  registered under several types independently
- A callback registered twice for the same type is one registration
- Dispatch isolates every callback: an exception is logged and delivery
  continues with the next callback
- The unsubscribe function removes exactly its own registration and is
  safe to call more than once
- Empty entries are deleted so abandoned types do not accumulate

Delivery order follows registration order. Consumers must not rely on it.
"""

from __future__ import annotations

from typing import Any, Callable

from observability.logger import exception_fields, log_event, wall_ms


Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class EventRegistry:
    """Mapping of event type -> ordered set of listeners."""

    def __init__(self) -> None:
        self._listeners: dict[str, dict[Listener, None]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def subscribe(self, event_type: str, callback: Listener) -> Unsubscribe:
        """Register `callback` for `event_type` and return its remover."""
        self._listeners.setdefault(event_type, {})[callback] = None

        def unsubscribe() -> None:
            listeners = self._listeners.get(event_type)
            if listeners is None:
                return
            listeners.pop(callback, None)
            if not listeners:
                del self._listeners[event_type]

        return unsubscribe

    def dispatch(self, event_type: str, data: Any) -> int:
        """
        Deliver `data` to every listener of `event_type`.

        Returns the number of listeners that completed without raising.
        Never raises.
        """
        listeners = self._listeners.get(event_type)
        if not listeners:
            return 0

        delivered = 0
        # Snapshot: listeners may unsubscribe while being called
        for callback in list(listeners):
            try:
                callback(data)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "WS_LISTENER_ERROR",
                    "ts_ms": wall_ms(),
                    "message_type": event_type,
                    "listener": getattr(callback, "__qualname__", repr(callback)),
                    **exception_fields(exc),
                })
                continue
            delivered += 1
        return delivered

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is not None:
            return len(self._listeners.get(event_type, {}))
        return sum(len(listeners) for listeners in self._listeners.values())

    def event_types(self) -> tuple[str, ...]:
        return tuple(self._listeners)

    def clear(self) -> None:
        self._listeners.clear()

"""In-process telemetry hook for sync engine events.

Hosts register listeners per event name (for example to forward drain
results to an analytics endpoint); the engine calls :func:`emit`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

__all__ = [
    "WINDOW_OPENED",
    "DRAIN_COMPLETED",
    "STATUS_CHANGED",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
    "clear_event_listeners",
]

LOGGER = logging.getLogger(__name__)

WINDOW_OPENED = "sync.window_opened"
DRAIN_COMPLETED = "sync.drain_completed"
STATUS_CHANGED = "sync.status_changed"

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if listeners and callback in listeners:
        listeners.remove(callback)


def clear_event_listeners() -> None:
    _EVENT_LISTENERS.clear()


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    for callback in list(_EVENT_LISTENERS.get(event_name, ())):
        try:
            callback(dict(event_payload))
        except Exception:  # listeners must not break emitters
            LOGGER.warning("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)

"""Connection monitor re-triggering queue drains on reconnect."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..host.reachability import Reachability
from .queue import SyncQueue
from .single_flight import SingleFlight

__all__ = ["ConnectionMonitor"]

LOGGER = logging.getLogger(__name__)


class ConnectionMonitor:
    """Turns host reachability transitions into drain triggers.

    Purely event-driven: nothing is polled. A reconnect with a non-empty queue
    triggers the shared :class:`SingleFlight` drain, which joins an already
    running drain instead of starting a second one.
    """

    def __init__(self, reachability: Reachability, queue: SyncQueue, drain: SingleFlight[Any]) -> None:
        self._reachability = reachability
        self._queue = queue
        self._drain = drain

    def is_online(self) -> bool:
        return self._reachability.is_reachable()

    def subscribe(
        self,
        on_reconnect: Callable[[], None] | None = None,
        on_disconnect: Callable[[], None] | None = None,
    ) -> Callable[[], None]:
        def handle(online: bool) -> None:
            if online:
                LOGGER.info("Connection restored")
                if on_reconnect is not None:
                    on_reconnect()
                if not self._queue.is_empty():
                    self._trigger_drain()
            else:
                LOGGER.info("Connection lost")
                if on_disconnect is not None:
                    on_disconnect()

        return self._reachability.on_change(handle)

    def _trigger_drain(self) -> None:
        try:
            self._drain.trigger()
        except RuntimeError as exc:
            # Reachability events delivered outside the event loop cannot schedule work.
            LOGGER.warning("Unable to start queue drain on reconnect: %s", exc)

"""Network reachability sources."""

from __future__ import annotations

import logging
from typing import Callable, Protocol, runtime_checkable

__all__ = ["Reachability", "ReachabilityCallback", "ManualReachability"]

LOGGER = logging.getLogger(__name__)

ReachabilityCallback = Callable[[bool], None]


@runtime_checkable
class Reachability(Protocol):
    """Host signal reporting whether the backend is believed reachable."""

    def is_reachable(self) -> bool:  # pragma: no cover - protocol stub
        ...

    def on_change(self, callback: ReachabilityCallback) -> Callable[[], None]:  # pragma: no cover
        """Register ``callback(online)`` for transitions; returns an unsubscribe function."""
        ...


class ManualReachability:
    """Reachability driven by the host pushing online/offline transitions.

    Callbacks fire only when the state actually changes, mirroring browser
    ``online``/``offline`` events.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._callbacks: list[ReachabilityCallback] = []

    def is_reachable(self) -> bool:
        return self._online

    def on_change(self, callback: ReachabilityCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def set_reachable(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        LOGGER.info("Reachability changed: %s", "online" if online else "offline")
        for callback in list(self._callbacks):
            try:
                callback(online)
            except Exception:
                LOGGER.exception("Reachability callback %s failed", callback)

    def go_online(self) -> None:
        self.set_reachable(True)

    def go_offline(self) -> None:
        self.set_reachable(False)

    @property
    def listener_count(self) -> int:
        return len(self._callbacks)

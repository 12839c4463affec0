"""Sync status state machine exposed to the UI."""

from __future__ import annotations

import logging
from typing import Callable

from .models import SyncStatus

__all__ = ["StatusCallback", "SyncStatusSignal"]

LOGGER = logging.getLogger(__name__)

StatusCallback = Callable[[SyncStatus], None]


class SyncStatusSignal:
    """Tracks engine health as one of the :class:`SyncStatus` states.

    ``begin``/``settle`` bracket every backend write (a direct confirm or a
    drain). Overlapping writes are counted; the status leaves ``SYNCING`` only
    once the last of them settles. An unexpected failure seen by any of the
    overlapping writes wins over the queue-derived outcome.
    """

    def __init__(self, initial: SyncStatus = SyncStatus.SYNCED) -> None:
        self._status = initial
        self._in_flight = 0
        self._error_pending = False
        self._subscribers: list[StatusCallback] = []

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def begin(self) -> None:
        self._in_flight += 1
        self._set(SyncStatus.SYNCING)

    def settle(self, *, queue_empty: bool, unexpected: bool = False) -> None:
        if self._in_flight == 0:
            LOGGER.debug("settle() called with no write in flight")
        self._in_flight = max(0, self._in_flight - 1)
        self._error_pending = self._error_pending or unexpected
        if self._in_flight:
            return
        if self._error_pending:
            self._error_pending = False
            self._set(SyncStatus.ERROR)
        elif queue_empty:
            self._set(SyncStatus.SYNCED)
        else:
            self._set(SyncStatus.OFFLINE)

    def refresh(self, *, queue_empty: bool) -> None:
        """Recompute an idle status from the queue (no-op while writes are in flight)."""

        if self._in_flight:
            return
        self._set(SyncStatus.SYNCED if queue_empty else SyncStatus.OFFLINE)

    def went_offline(self, *, queue_empty: bool) -> None:
        if self._in_flight or queue_empty:
            return
        self._set(SyncStatus.OFFLINE)

    def fail(self) -> None:
        self._set(SyncStatus.ERROR)

    def _set(self, status: SyncStatus) -> None:
        if status is self._status:
            return
        previous, self._status = self._status, status
        LOGGER.debug("Sync status %s -> %s", previous.value, status.value)
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception:
                LOGGER.warning("Sync status subscriber %s failed", callback, exc_info=True)

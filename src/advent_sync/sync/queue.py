"""Durable, ordered queue of window-open events awaiting confirmation."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Iterable

from ..errors import StorageWriteError
from ..host.storage import KeyValueStore
from .models import QueuedEvent

__all__ = ["SYNC_QUEUE_KEY", "SyncQueue"]

LOGGER = logging.getLogger(__name__)
SYNC_QUEUE_KEY = "advent-sync-queue"


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SyncQueue:
    """Queue persisted as a JSON array under its own storage key.

    Storage is re-read on every operation so events written by a concurrent
    ``enqueue`` are always visible. When a write is rejected the queue keeps
    serving from an in-memory mirror until a later write succeeds.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        key: str = SYNC_QUEUE_KEY,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._storage = storage
        self._key = key
        self._clock = clock or _now_ms
        self._mirror: list[QueuedEvent] | None = None

    def enqueue(self, user_id: str, window_number: int) -> QueuedEvent:
        events = self._read()
        stamp = self._clock()
        if events:
            # Timestamps identify events during a drain, so keep them unique.
            stamp = max(stamp, max(event.enqueued_at for event in events) + 1)
        event = QueuedEvent(user_id=user_id, window_number=window_number, enqueued_at=stamp)
        events.append(event)
        self._write(events)
        LOGGER.debug("Queued window %s for %s (queue length %d)", window_number, user_id, len(events))
        return event

    def peek_all(self) -> list[QueuedEvent]:
        return self._read()

    def remove_confirmed(self, events: Iterable[QueuedEvent]) -> list[QueuedEvent]:
        """Drop *events* from the current queue and persist what remains.

        The queue is re-read first, so events enqueued after the caller took
        its snapshot survive. The result is ordered by ``enqueued_at``.
        """

        confirmed = {event.identity for event in events}
        remaining = [event for event in self._read() if event.identity not in confirmed]
        remaining.sort(key=lambda event: event.enqueued_at)
        self._write(remaining)
        return list(remaining)

    def is_empty(self) -> bool:
        return not self._read()

    def clear(self) -> None:
        LOGGER.info("Clearing sync queue")
        self._write([])

    def __len__(self) -> int:
        return len(self._read())

    def _read(self) -> list[QueuedEvent]:
        if self._mirror is not None:
            return list(self._mirror)
        raw = self._storage.read_key(self._key)
        if raw is None:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Sync queue under %s is not valid JSON: %s", self._key, exc)
            return []
        if not isinstance(payload, list):
            LOGGER.warning("Sync queue under %s is not an array; ignoring it", self._key)
            return []
        events: list[QueuedEvent] = []
        for entry in payload:
            event = QueuedEvent.from_payload(entry)
            if event is None:
                LOGGER.warning("Dropping malformed sync queue entry %r", entry)
                continue
            events.append(event)
        return events

    def _write(self, events: list[QueuedEvent]) -> None:
        body = json.dumps([event.to_payload() for event in events])
        try:
            self._storage.write_key(self._key, body)
        except (StorageWriteError, OSError) as exc:
            LOGGER.warning("Failed to persist sync queue (%d events): %s", len(events), exc)
            self._mirror = list(events)
        else:
            self._mirror = None

"""Merges remote progress and drains the sync queue against the backend."""

from __future__ import annotations

import logging
from typing import Iterable

from ..backend.classify import FailureKind, classify_failure
from ..backend.types import ProgressBackend, RecordOutcome
from ..errors import UnexpectedResponseError
from .models import DrainResult, OpenedWindowSet, QueuedEvent, coerce_window_number
from .queue import SyncQueue

__all__ = ["Reconciler"]

LOGGER = logging.getLogger(__name__)


class Reconciler:
    """Brings local and remote progress into agreement.

    Not reentrant: callers run at most one :meth:`drain_queue` at a time.
    Concurrent :meth:`SyncQueue.enqueue` calls during a drain are safe.
    """

    def __init__(
        self,
        queue: SyncQueue,
        backend: ProgressBackend,
        *,
        match_duplicate_messages: bool = True,
    ) -> None:
        self._queue = queue
        self._backend = backend
        self._match_duplicate_messages = match_duplicate_messages

    @staticmethod
    def merge_remote(local: Iterable[int], remote: Iterable[int]) -> OpenedWindowSet:
        """Union of *local* and *remote*. Remote absence never removes a window."""

        merged = set(local)
        for entry in remote:
            window = coerce_window_number(entry)
            if window is None:
                LOGGER.warning("Ignoring invalid remote window %r", entry)
                continue
            merged.add(window)
        return frozenset(merged)

    async def fetch_remote(self, user_id: str) -> OpenedWindowSet:
        remote = await self._backend.fetch_opened(user_id)
        LOGGER.debug("Fetched %d remote window(s) for %s", len(remote), user_id)
        return self.merge_remote((), remote)

    async def fetch_and_merge(self, user_id: str, local: Iterable[int]) -> OpenedWindowSet:
        return frozenset(local) | await self.fetch_remote(user_id)

    async def drain_queue(self) -> DrainResult:
        result = DrainResult()
        snapshot = self._queue.peek_all()
        if not snapshot:
            return result
        snapshot_ids = {event.identity for event in snapshot}
        confirmed: list[QueuedEvent] = []
        LOGGER.info("Draining %d queued event(s)", len(snapshot))

        try:
            for event in snapshot:
                kind = await self._deliver(event, result)
                if kind is None:
                    confirmed.append(event)
        finally:
            # Re-reads storage, so events enqueued mid-drain are kept alongside retained ones.
            remaining = self._queue.remove_confirmed(confirmed)

        added = sum(1 for event in remaining if event.identity not in snapshot_ids)
        LOGGER.info(
            "Drain finished: %d synced, %d failed, %d queued during drain, %d remaining",
            result.synced,
            result.failed,
            added,
            len(remaining),
        )
        return result

    async def _deliver(self, event: QueuedEvent, result: DrainResult) -> FailureKind | None:
        """Attempt one event; returns ``None`` when it can leave the queue."""

        try:
            outcome = await self._backend.record_open(event.user_id, event.window_number)
        except Exception as exc:
            kind = classify_failure(exc, match_messages=self._match_duplicate_messages)
            if kind is FailureKind.DUPLICATE:
                LOGGER.debug("Window %s already recorded for %s", event.window_number, event.user_id)
                result.synced += 1
                return None
            LOGGER.warning(
                "Keeping window %s for %s queued (%s): %s",
                event.window_number,
                event.user_id,
                kind.value,
                exc,
            )
            self._record_failure(result, exc, kind)
            return kind

        if outcome in (RecordOutcome.CONFIRMED, RecordOutcome.DUPLICATE):
            result.synced += 1
            return None
        error = UnexpectedResponseError(f"Unrecognised record_open outcome {outcome!r}")
        LOGGER.warning("Keeping window %s for %s queued: %s", event.window_number, event.user_id, error)
        self._record_failure(result, error, FailureKind.UNEXPECTED)
        return FailureKind.UNEXPECTED

    @staticmethod
    def _record_failure(result: DrainResult, error: BaseException, kind: FailureKind) -> None:
        result.failed += 1
        result.errors.append(error)
        result.failure_kinds.append(kind)

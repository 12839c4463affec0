"""Tests for remote merge and queue draining."""

from __future__ import annotations

import httpx
import pytest

from advent_sync.backend import FailureKind, InMemoryProgressBackend
from advent_sync.errors import BackendError, TransientBackendError, UnexpectedResponseError
from advent_sync.host import InMemoryKeyValueStore
from advent_sync.sync.queue import SyncQueue
from advent_sync.sync.reconciler import Reconciler

from tests.helpers import USER_ID, StepClock


def _make(storage: InMemoryKeyValueStore, backend: InMemoryProgressBackend, clock: StepClock, **kwargs):
    queue = SyncQueue(storage, clock=clock)
    return queue, Reconciler(queue, backend, **kwargs)


def test_merge_remote_is_pure_union() -> None:
    local = frozenset({1, 2, 3})

    assert Reconciler.merge_remote(local, [3, 4]) == frozenset({1, 2, 3, 4})
    assert Reconciler.merge_remote(local, []) == local
    assert Reconciler.merge_remote(frozenset(), [2, 2]) == frozenset({2})


def test_merge_remote_ignores_invalid_entries() -> None:
    assert Reconciler.merge_remote({1}, [0, "5", True, 6]) == frozenset({1, 6})


@pytest.mark.asyncio
async def test_fetch_and_merge_unions_remote_rows(storage, backend, clock) -> None:
    backend.seed(USER_ID, 4, 5)
    _, reconciler = _make(storage, backend, clock)

    merged = await reconciler.fetch_and_merge(USER_ID, {1, 4})

    assert merged == frozenset({1, 4, 5})


@pytest.mark.asyncio
async def test_drain_empty_queue_is_noop(storage, backend, clock) -> None:
    _, reconciler = _make(storage, backend, clock)

    result = await reconciler.drain_queue()

    assert (result.synced, result.failed, result.errors) == (0, 0, [])
    assert backend.calls == []


@pytest.mark.asyncio
async def test_drain_confirms_events_in_timestamp_order(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    for window in (3, 1, 2):
        queue.enqueue(USER_ID, window)

    result = await reconciler.drain_queue()

    assert result.synced == 3 and result.failed == 0
    assert backend.calls == [(USER_ID, 3), (USER_ID, 1), (USER_ID, 2)]
    assert queue.is_empty()
    assert backend.rows_for(USER_ID) == [1, 2, 3]


@pytest.mark.asyncio
@pytest.mark.parametrize("style", ["outcome", "code", "message"])
async def test_duplicates_count_as_synced_for_every_signal(storage, clock, style) -> None:
    backend = InMemoryProgressBackend(duplicate_style=style)
    backend.seed(USER_ID, 5)
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 5)
    queue.enqueue(USER_ID, 5)

    result = await reconciler.drain_queue()

    assert result.synced == 2
    assert result.failed == 0
    assert queue.is_empty()
    assert backend.rows_for(USER_ID) == [5]


@pytest.mark.asyncio
async def test_message_shim_can_be_disabled(storage, clock) -> None:
    backend = InMemoryProgressBackend(duplicate_style="message")
    backend.seed(USER_ID, 5)
    queue, reconciler = _make(storage, backend, clock, match_duplicate_messages=False)
    queue.enqueue(USER_ID, 5)

    result = await reconciler.drain_queue()

    assert result.failed == 1
    assert result.failure_kinds == [FailureKind.UNEXPECTED]
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_transient_failures_retain_events(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 1)
    queue.enqueue(USER_ID, 2)
    queue.enqueue(USER_ID, 3)
    backend.fail_next(TransientBackendError("timeout"), httpx.ConnectError("refused"))

    result = await reconciler.drain_queue()

    assert result.synced == 1
    assert result.failed == 2
    assert result.failure_kinds == [FailureKind.TRANSIENT, FailureKind.TRANSIENT]
    assert not result.unexpected
    assert [event.window_number for event in queue.peek_all()] == [1, 2]


@pytest.mark.asyncio
async def test_unexpected_failures_are_flagged(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 1)
    backend.fail_next(UnexpectedResponseError("garbled"))

    result = await reconciler.drain_queue()

    assert result.unexpected
    assert isinstance(result.errors[0], UnexpectedResponseError)
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_server_errors_are_transient(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 1)
    backend.fail_next(BackendError("bad gateway", status=502))

    result = await reconciler.drain_queue()

    assert result.failure_kinds == [FailureKind.TRANSIENT]
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_events_enqueued_mid_drain_survive(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 1)
    queue.enqueue(USER_ID, 2)
    backend.fail_next(TransientBackendError("flaky"))

    def enqueue_during_first_write(user_id: str, window: int) -> None:
        if window == 1:
            queue.enqueue(USER_ID, 7)

    backend.before_record(enqueue_during_first_write)

    result = await reconciler.drain_queue()

    assert result.synced == 1 and result.failed == 1
    remaining = queue.peek_all()
    assert [event.window_number for event in remaining] == [1, 7]
    assert remaining == sorted(remaining, key=lambda event: event.enqueued_at)
    assert (USER_ID, 7) not in backend.calls


@pytest.mark.asyncio
async def test_drain_is_idempotent_across_repeats(storage, backend, clock) -> None:
    queue, reconciler = _make(storage, backend, clock)
    queue.enqueue(USER_ID, 4)
    backend.reachable = False

    first = await reconciler.drain_queue()
    backend.reachable = True
    second = await reconciler.drain_queue()
    third = await reconciler.drain_queue()

    assert (first.failed, second.synced, third.synced) == (1, 1, 0)
    assert backend.rows_for(USER_ID) == [4]

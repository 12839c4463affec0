"""Tests for the single-flight guard and the connection monitor."""

from __future__ import annotations

import asyncio

import pytest

from advent_sync.host import InMemoryKeyValueStore, ManualReachability
from advent_sync.sync.monitor import ConnectionMonitor
from advent_sync.sync.queue import SyncQueue
from advent_sync.sync.single_flight import SingleFlight

from tests.helpers import USER_ID, StepClock


class _GatedWork:
    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.runs = 0

    async def __call__(self) -> int:
        self.runs += 1
        await self.gate.wait()
        return self.runs


@pytest.mark.asyncio
async def test_single_flight_shares_running_task() -> None:
    work = _GatedWork()
    starts: list[int] = []
    flight = SingleFlight(work, on_start=lambda: starts.append(1))

    first = flight.trigger()
    second = flight.trigger()
    assert first is second
    assert flight.in_flight

    work.gate.set()
    assert await first == 1
    assert starts == [1]
    assert not flight.in_flight


@pytest.mark.asyncio
async def test_single_flight_runs_again_after_completion() -> None:
    work = _GatedWork()
    work.gate.set()
    flight = SingleFlight(work)

    assert await flight.run() == 1
    assert await flight.run() == 2
    assert work.runs == 2


@pytest.mark.asyncio
async def test_single_flight_waiter_cancellation_keeps_shared_work() -> None:
    work = _GatedWork()
    flight = SingleFlight(work)

    waiter = asyncio.ensure_future(flight.run())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert flight.in_flight
    work.gate.set()
    await flight.wait()
    assert work.runs == 1


def test_single_flight_trigger_requires_running_loop() -> None:
    flight = SingleFlight(_GatedWork())

    with pytest.raises(RuntimeError):
        flight.trigger()


def _monitor(reachability: ManualReachability, queue: SyncQueue, work: _GatedWork):
    starts: list[int] = []
    flight = SingleFlight(work, name="drain", on_start=lambda: starts.append(1))
    return ConnectionMonitor(reachability, queue, flight), flight, starts


@pytest.mark.asyncio
async def test_reconnect_with_pending_queue_triggers_one_drain(clock: StepClock) -> None:
    reachability = ManualReachability(online=False)
    queue = SyncQueue(InMemoryKeyValueStore(), clock=clock)
    queue.enqueue(USER_ID, 1)
    work = _GatedWork()
    monitor, flight, starts = _monitor(reachability, queue, work)
    reconnects: list[bool] = []
    monitor.subscribe(on_reconnect=lambda: reconnects.append(True))

    reachability.go_online()
    reachability.go_offline()
    reachability.go_online()

    assert reconnects == [True, True]
    assert starts == [1]
    work.gate.set()
    await flight.wait()
    assert work.runs == 1


@pytest.mark.asyncio
async def test_reconnect_with_empty_queue_does_nothing(clock: StepClock) -> None:
    reachability = ManualReachability(online=False)
    queue = SyncQueue(InMemoryKeyValueStore(), clock=clock)
    monitor, flight, starts = _monitor(reachability, queue, _GatedWork())
    monitor.subscribe()

    reachability.go_online()

    assert starts == []
    assert not flight.in_flight
    assert monitor.is_online()


def test_reconnect_outside_event_loop_is_logged(clock: StepClock, caplog: pytest.LogCaptureFixture) -> None:
    reachability = ManualReachability(online=False)
    queue = SyncQueue(InMemoryKeyValueStore(), clock=clock)
    queue.enqueue(USER_ID, 1)
    monitor, flight, starts = _monitor(reachability, queue, _GatedWork())
    monitor.subscribe()

    reachability.go_online()

    assert starts == []
    assert not flight.in_flight
    assert "Unable to start queue drain" in caplog.text


@pytest.mark.asyncio
async def test_unsubscribe_stops_listening(clock: StepClock) -> None:
    reachability = ManualReachability(online=False)
    queue = SyncQueue(InMemoryKeyValueStore(), clock=clock)
    disconnects: list[bool] = []
    monitor, _, _ = _monitor(reachability, queue, _GatedWork())
    unsubscribe = monitor.subscribe(on_disconnect=lambda: disconnects.append(True))

    reachability.go_online()
    reachability.go_offline()
    unsubscribe()
    reachability.go_online()
    reachability.go_offline()

    assert disconnects == [True]
    assert reachability.listener_count == 0

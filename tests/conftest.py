"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from advent_sync.backend import InMemoryProgressBackend
from advent_sync.host import InMemoryKeyValueStore, ManualReachability
from advent_sync.services import telemetry
from advent_sync.services.settings import SyncSettings

from tests.helpers import StepClock


@pytest.fixture(autouse=True)
def _reset_telemetry_listeners():
    telemetry.clear_event_listeners()
    yield
    telemetry.clear_event_listeners()


@pytest.fixture
def storage() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def reachability() -> ManualReachability:
    return ManualReachability(online=True)


@pytest.fixture
def backend() -> InMemoryProgressBackend:
    return InMemoryProgressBackend()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def sync_settings() -> SyncSettings:
    return SyncSettings(
        supabase_url="https://demo.supabase.co",
        api_key="anon-key",
        demo_mode=False,
        max_window=12,
    )

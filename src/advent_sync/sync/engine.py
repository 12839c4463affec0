"""Facade wiring the sync components into the UI-facing engine."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from ..backend.classify import FailureKind, classify_failure
from ..backend.supabase import SupabaseProgressBackend, SupabaseSettings
from ..backend.types import ProgressBackend, RecordOutcome
from ..host.reachability import Reachability
from ..host.storage import JsonFileKeyValueStore, KeyValueStore
from ..services import telemetry
from ..services.settings import SyncSettings
from .models import DrainResult, OpenedWindowSet, SyncStatus, sorted_windows
from .monitor import ConnectionMonitor
from .progress_store import LocalProgressStore
from .queue import SyncQueue
from .reconciler import Reconciler
from .single_flight import SingleFlight
from .status import StatusCallback, SyncStatusSignal

__all__ = ["ProgressSyncEngine"]

LOGGER = logging.getLogger(__name__)


class ProgressSyncEngine:
    """Offline-first progress tracking for one calendar session.

    Opening a window always lands in local storage first. With a signed-in user
    and a backend, the open is then confirmed directly or queued for the next
    drain. Without either the engine runs local-only (demo mode).
    """

    def __init__(
        self,
        storage: KeyValueStore,
        reachability: Reachability,
        backend: ProgressBackend | None = None,
        *,
        user_id: str | None = None,
        settings: SyncSettings | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._settings = settings or SyncSettings()
        self._user_id = user_id or None
        self._backend = backend
        self._owns_backend = False
        self._store = LocalProgressStore(storage)
        self._queue = SyncQueue(storage, clock=clock)
        self._adopt_queued()
        self._status = SyncStatusSignal()
        self._status.subscribe(self._emit_status)
        self._reconciler: Reconciler | None = None
        if backend is not None:
            self._reconciler = Reconciler(
                self._queue,
                backend,
                match_duplicate_messages=self._settings.match_duplicate_messages,
            )
        self._drain: SingleFlight[DrainResult] = SingleFlight(
            self._run_drain, name="sync-drain", on_start=self._status.begin
        )
        self._monitor = ConnectionMonitor(reachability, self._queue, self._drain)
        self._unsubscribe_monitor: Callable[[], None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        *,
        reachability: Reachability,
        user_id: str | None = None,
        access_token: str | None = None,
        storage: KeyValueStore | None = None,
    ) -> ProgressSyncEngine:
        """Build an engine (and its Supabase backend, when enabled) from *settings*."""

        storage = storage or JsonFileKeyValueStore(settings.resolved_storage_dir())
        backend: ProgressBackend | None = None
        if settings.sync_enabled and user_id:
            backend = SupabaseProgressBackend(
                SupabaseSettings.from_sync_settings(settings, access_token=access_token)
            )
        elif not settings.demo_mode:
            LOGGER.info("Backend not configured or no user signed in; progress stays local")
        engine = cls(storage, reachability, backend, user_id=user_id, settings=settings)
        engine._owns_backend = backend is not None
        return engine

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None and self._backend is not None

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    # ------------------------------------------------------------------
    # UI contract
    # ------------------------------------------------------------------

    def get_opened_windows(self) -> OpenedWindowSet:
        return self._store.opened

    def get_sync_status(self) -> SyncStatus:
        return self._status.status

    def subscribe_status(self, callback: StatusCallback) -> Callable[[], None]:
        return self._status.subscribe(callback)

    def open_window(self, window_number: int) -> asyncio.Task[None] | None:
        """Mark *window_number* opened and start syncing it.

        Returns the confirm task when a backend write was started, otherwise
        ``None`` (already opened, local-only, or queued while offline). Sync
        failures never raise; only an invalid window number does.
        """

        window = self._validate_window(window_number)
        if not self._store.add(window):
            LOGGER.debug("Window %s already opened", window)
            return None
        telemetry.emit(
            telemetry.WINDOW_OPENED,
            {"window_number": window, "opened": sorted_windows(self._store.opened)},
        )
        if not self.is_authenticated:
            return None
        user_id = self._user_id
        assert user_id is not None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None or not self._monitor.is_online():
            self._queue.enqueue(user_id, window)
            self._status.went_offline(queue_empty=False)
            LOGGER.info("Queued window %s for later sync", window)
            return None

        self._status.begin()
        task = loop.create_task(self._confirm_open(user_id, window), name=f"confirm-window-{window}")
        self._track(task)
        return task

    async def force_drain(self) -> DrainResult:
        if not self.is_authenticated:
            return DrainResult()
        return await self._drain.run()

    def has_pending_sync(self) -> bool:
        return not self._queue.is_empty()

    def pending_count(self) -> int:
        return len(self._queue)

    def clear_queue(self) -> None:
        """Discard every queued event. Unsynced opens are lost remotely."""

        self._queue.clear()
        self._status.refresh(queue_empty=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> OpenedWindowSet:
        """Subscribe to reachability, then fetch, merge and drain when signed in."""

        if not self.is_authenticated:
            return self._store.opened
        if self._unsubscribe_monitor is None:
            self._unsubscribe_monitor = self._monitor.subscribe(on_disconnect=self._on_disconnect)
        self._adopt_queued()
        if not self._monitor.is_online():
            self._status.went_offline(queue_empty=self._queue.is_empty())
            return self._store.opened

        assert self._reconciler is not None and self._user_id is not None
        self._status.begin()
        unexpected = False
        drain: asyncio.Task[DrainResult] | None = None
        try:
            try:
                remote = await self._reconciler.fetch_remote(self._user_id)
            except Exception as exc:
                kind = classify_failure(exc, match_messages=self._settings.match_duplicate_messages)
                unexpected = kind is FailureKind.UNEXPECTED
                LOGGER.warning("Unable to fetch remote progress (%s): %s", kind.value, exc)
            else:
                self._backfill(remote)
                self._store.merge(Reconciler.merge_remote(self._store.opened, remote))
            if not self._queue.is_empty():
                drain = self._drain.trigger()
        finally:
            self._status.settle(queue_empty=self._queue.is_empty(), unexpected=unexpected)
        if drain is not None:
            await asyncio.shield(drain)
        return self._store.opened

    async def stop(self) -> None:
        if self._unsubscribe_monitor is not None:
            self._unsubscribe_monitor()
            self._unsubscribe_monitor = None
        await self.wait_idle()
        if self._owns_backend and self._backend is not None:
            await self._backend.aclose()

    async def wait_idle(self) -> None:
        """Wait for outstanding confirms and drains, including follow-up drains."""

        while True:
            pending = [task for task in self._tasks if not task.done()]
            drain = self._drain.task
            if drain is not None:
                pending.append(drain)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_window(self, window_number: Any) -> int:
        if isinstance(window_number, bool) or not isinstance(window_number, int):
            raise ValueError(f"Window number must be an integer, got {window_number!r}")
        if not 1 <= window_number <= self._settings.max_window:
            raise ValueError(
                f"Window number {window_number} outside 1..{self._settings.max_window}"
            )
        return window_number

    def _adopt_queued(self) -> None:
        """Add windows that only survive in the queue back into local progress."""

        queued = {event.window_number for event in self._queue.peek_all()}
        missing = queued - self._store.opened
        if missing:
            LOGGER.warning("Restoring %d queued window(s) missing from local progress", len(missing))
            self._store.merge(missing)

    def _backfill(self, remote: OpenedWindowSet) -> None:
        events = self._queue.peek_all()
        # Local progress is per device, not per user.
        if not any(event.user_id == self._user_id for event in events):
            return
        queued = {event.window_number for event in events}
        missing = sorted_windows(self._store.opened - remote - queued)
        for window in missing:
            self._queue.enqueue(self._user_id or "", window)
        if missing:
            LOGGER.info("Queued %d local window(s) missing remotely: %s", len(missing), missing)

    async def _confirm_open(self, user_id: str, window: int) -> None:
        assert self._backend is not None
        unexpected = False
        follow_up = False
        try:
            outcome = await self._backend.record_open(user_id, window)
        except asyncio.CancelledError:
            self._queue.enqueue(user_id, window)
            raise
        except Exception as exc:
            kind = classify_failure(exc, match_messages=self._settings.match_duplicate_messages)
            if kind is FailureKind.DUPLICATE:
                LOGGER.debug("Window %s was already recorded remotely", window)
                follow_up = not self._queue.is_empty()
            else:
                unexpected = kind is FailureKind.UNEXPECTED
                self._queue.enqueue(user_id, window)
                LOGGER.warning("Queued window %s after %s failure: %s", window, kind.value, exc)
        else:
            if outcome in (RecordOutcome.CONFIRMED, RecordOutcome.DUPLICATE):
                LOGGER.debug("Window %s confirmed (%s)", window, outcome.value)
                follow_up = not self._queue.is_empty()
            else:
                unexpected = True
                self._queue.enqueue(user_id, window)
                LOGGER.warning("Queued window %s after unrecognised outcome %r", window, outcome)
        finally:
            if follow_up and self._monitor.is_online():
                self._drain.trigger()
            self._status.settle(queue_empty=self._queue.is_empty(), unexpected=unexpected)

    async def _run_drain(self) -> DrainResult:
        result = DrainResult()
        unexpected = False
        try:
            if self._reconciler is not None:
                result = await self._reconciler.drain_queue()
            unexpected = result.unexpected
            return result
        except Exception:
            unexpected = True
            raise
        finally:
            self._status.settle(queue_empty=self._queue.is_empty(), unexpected=unexpected)
            telemetry.emit(telemetry.DRAIN_COMPLETED, result.as_dict())

    def _on_disconnect(self) -> None:
        self._status.went_offline(queue_empty=self._queue.is_empty())

    def _emit_status(self, status: SyncStatus) -> None:
        telemetry.emit(telemetry.STATUS_CHANGED, {"status": status.value})

    def _track(self, task: asyncio.Task[Any]) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("Sync task %s failed", task.get_name(), exc_info=error)

"""Offline-first progress sync: local store, queue, reconciler and status."""

from .engine import ProgressSyncEngine
from .models import DrainResult, OpenedWindowSet, QueuedEvent, SyncStatus, sorted_windows
from .monitor import ConnectionMonitor
from .progress_store import LOCAL_PROGRESS_KEY, LocalProgressStore
from .queue import SYNC_QUEUE_KEY, SyncQueue
from .reconciler import Reconciler
from .single_flight import SingleFlight
from .status import SyncStatusSignal

__all__ = [
    "ConnectionMonitor",
    "DrainResult",
    "LOCAL_PROGRESS_KEY",
    "LocalProgressStore",
    "OpenedWindowSet",
    "ProgressSyncEngine",
    "QueuedEvent",
    "Reconciler",
    "SYNC_QUEUE_KEY",
    "SingleFlight",
    "SyncQueue",
    "SyncStatus",
    "SyncStatusSignal",
    "sorted_windows",
]

"""Durable local record of opened windows."""

from __future__ import annotations

import json
import logging
from typing import Iterable

from ..errors import StorageWriteError
from ..host.storage import KeyValueStore
from .models import OpenedWindowSet, coerce_window_number, sorted_windows

__all__ = ["LOCAL_PROGRESS_KEY", "LocalProgressStore"]

LOGGER = logging.getLogger(__name__)
LOCAL_PROGRESS_KEY = "advent-opened-days"


class LocalProgressStore:
    """Persistence adapter for the set of opened window numbers.

    The in-memory set is loaded once at construction and stays authoritative
    for the session; storage failures are logged and absorbed.
    """

    def __init__(self, storage: KeyValueStore, *, key: str = LOCAL_PROGRESS_KEY) -> None:
        self._storage = storage
        self._key = key
        self._opened: OpenedWindowSet = self.load()

    @property
    def opened(self) -> OpenedWindowSet:
        return self._opened

    def load(self) -> OpenedWindowSet:
        raw = self._storage.read_key(self._key)
        if raw is None:
            return frozenset()
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("Local progress under %s is not valid JSON: %s", self._key, exc)
            return frozenset()
        if not isinstance(payload, list):
            LOGGER.warning("Local progress under %s is not an array; ignoring it", self._key)
            return frozenset()
        windows = set()
        for entry in payload:
            window = coerce_window_number(entry)
            if window is None:
                LOGGER.warning("Dropping invalid window entry %r from local progress", entry)
                continue
            windows.add(window)
        return frozenset(windows)

    def save(self, windows: Iterable[int]) -> None:
        self._opened = frozenset(windows)
        body = json.dumps(sorted_windows(self._opened))
        try:
            self._storage.write_key(self._key, body)
        except (StorageWriteError, OSError) as exc:
            LOGGER.warning("Failed to persist local progress (%d windows): %s", len(self._opened), exc)

    def add(self, window_number: int) -> bool:
        """Record *window_number* as opened; returns ``False`` if it already was."""

        if window_number in self._opened:
            return False
        self.save(self._opened | {window_number})
        return True

    def merge(self, windows: Iterable[int]) -> OpenedWindowSet:
        self.save(self._opened | frozenset(windows))
        return self._opened

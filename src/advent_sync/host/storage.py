"""Persistent key-value stores standing in for the host's local storage."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..errors import StorageWriteError

__all__ = ["KeyValueStore", "JsonFileKeyValueStore", "InMemoryKeyValueStore"]

LOGGER = logging.getLogger(__name__)
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@runtime_checkable
class KeyValueStore(Protocol):
    """String key-value storage that survives reloads.

    ``write_key`` is best-effort: implementations raise
    :class:`~advent_sync.errors.StorageWriteError` when the write is rejected,
    and callers decide whether to absorb it.
    """

    def read_key(self, key: str) -> str | None:  # pragma: no cover - protocol stub
        ...

    def write_key(self, key: str, value: str) -> None:  # pragma: no cover - protocol stub
        ...


class JsonFileKeyValueStore:
    """Stores each key as its own file inside ``root`` using atomic replaces."""

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS.sub("_", key) or "_"
        return self._root / f"{safe}.json"

    def read_key(self, key: str) -> str | None:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.warning("Unable to read %s from %s: %s", key, path, exc)
            return None

    def write_key(self, key: str, value: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self._root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise StorageWriteError(key, str(exc)) from exc


class InMemoryKeyValueStore:
    """Dictionary-backed store for tests and hosts without durable storage.

    ``quota`` (in characters, summed over all values) simulates a host that
    rejects writes once full.
    """

    def __init__(self, initial: dict[str, str] | None = None, *, quota: int | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self.quota = quota
        self.write_count = 0

    def read_key(self, key: str) -> str | None:
        return self._data.get(key)

    def write_key(self, key: str, value: str) -> None:
        if self.quota is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.quota:
                raise StorageWriteError(key, "quota exceeded")
        self._data[key] = value
        self.write_count += 1

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)

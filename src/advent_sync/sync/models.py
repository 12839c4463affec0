"""Value types shared across the sync components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, FrozenSet, Iterable, Mapping

from ..backend.classify import FailureKind

__all__ = [
    "OpenedWindowSet",
    "SyncStatus",
    "QueuedEvent",
    "DrainResult",
    "coerce_window_number",
    "sorted_windows",
]

OpenedWindowSet = FrozenSet[int]


class SyncStatus(str, Enum):
    SYNCED = "synced"
    SYNCING = "syncing"
    OFFLINE = "offline"
    ERROR = "error"


def coerce_window_number(value: Any) -> int | None:
    """Return *value* as a window number, or ``None`` if it is not a positive int."""

    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


def sorted_windows(windows: Iterable[int]) -> list[int]:
    return sorted(set(windows))


@dataclass(slots=True, frozen=True)
class QueuedEvent:
    """A window-open the backend has not confirmed yet.

    ``enqueued_at`` is epoch milliseconds and doubles as the event identity.
    """

    user_id: str
    window_number: int
    enqueued_at: int

    @property
    def identity(self) -> int:
        return self.enqueued_at

    def to_payload(self) -> dict[str, Any]:
        return {
            "friend_id": self.user_id,
            "window_number": self.window_number,
            "timestamp": self.enqueued_at,
        }

    @classmethod
    def from_payload(cls, payload: object) -> QueuedEvent | None:
        if not isinstance(payload, Mapping):
            return None
        user_id = payload.get("friend_id")
        window = coerce_window_number(payload.get("window_number"))
        timestamp = payload.get("timestamp")
        if not isinstance(user_id, str) or not user_id or window is None:
            return None
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            return None
        return cls(user_id=user_id, window_number=window, enqueued_at=int(timestamp))


@dataclass(slots=True)
class DrainResult:
    """Tally of a single drain pass."""

    synced: int = 0
    failed: int = 0
    errors: list[BaseException] = field(default_factory=list)
    failure_kinds: list[FailureKind] = field(default_factory=list)

    @property
    def unexpected(self) -> bool:
        return FailureKind.UNEXPECTED in self.failure_kinds

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "errors": [repr(error) for error in self.errors],
        }

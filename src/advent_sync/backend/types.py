"""Backend collaborator contract."""

from __future__ import annotations

from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

__all__ = ["RecordOutcome", "ProgressBackend"]


class RecordOutcome(str, Enum):
    """Non-error results of a ``record_open`` call."""

    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"


@runtime_checkable
class ProgressBackend(Protocol):
    """Authoritative store of ``(user, window)`` rows.

    ``record_open`` returns :attr:`RecordOutcome.DUPLICATE` (or raises an error
    the classifier recognises as a duplicate) when the row already exists, and
    raises :class:`~advent_sync.errors.TransientBackendError` for retryable
    failures.
    """

    async def record_open(self, user_id: str, window_number: int) -> RecordOutcome:  # pragma: no cover
        ...

    async def fetch_opened(self, user_id: str) -> Sequence[int]:  # pragma: no cover
        ...

    async def aclose(self) -> None:  # pragma: no cover
        ...

"""In-memory backend enforcing the ``(user, window)`` unique constraint."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Literal

from ..errors import BackendError, TransientBackendError
from .types import RecordOutcome

__all__ = ["InMemoryProgressBackend", "DuplicateStyle"]

LOGGER = logging.getLogger(__name__)

DuplicateStyle = Literal["outcome", "code", "message"]
RecordHook = Callable[[str, int], Awaitable[None] | None]


class InMemoryProgressBackend:
    """Backend fake shared by any number of client sessions.

    ``duplicate_style`` selects how an existing row is reported: a
    :attr:`RecordOutcome.DUPLICATE` return (``"outcome"``), a raised
    :class:`BackendError` with code ``23505`` (``"code"``), or a raised error
    whose only signal is its message (``"message"``).
    """

    def __init__(self, *, duplicate_style: DuplicateStyle = "outcome") -> None:
        self.duplicate_style: DuplicateStyle = duplicate_style
        self.reachable = True
        self.calls: list[tuple[str, int]] = []
        self._rows: dict[str, set[int]] = {}
        self._scripted_failures: deque[BaseException] = deque()
        self._before_record: RecordHook | None = None
        self.closed = False

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def fail_next(self, *errors: BaseException) -> None:
        """Raise the given errors from the next ``record_open`` calls, in order."""

        self._scripted_failures.extend(errors)

    def before_record(self, hook: RecordHook | None) -> None:
        """Run *hook* inside ``record_open`` before the row is written."""

        self._before_record = hook

    def rows_for(self, user_id: str) -> list[int]:
        return sorted(self._rows.get(user_id, ()))

    def seed(self, user_id: str, *windows: int) -> None:
        self._rows.setdefault(user_id, set()).update(windows)

    # ------------------------------------------------------------------
    # ProgressBackend
    # ------------------------------------------------------------------

    async def record_open(self, user_id: str, window_number: int) -> RecordOutcome:
        self.calls.append((user_id, window_number))
        if self._before_record is not None:
            result = self._before_record(user_id, window_number)
            if asyncio.iscoroutine(result):
                await result
        await asyncio.sleep(0)
        if not self.reachable:
            raise TransientBackendError("Network request failed")
        if self._scripted_failures:
            raise self._scripted_failures.popleft()
        rows = self._rows.setdefault(user_id, set())
        if window_number in rows:
            return self._report_duplicate(user_id, window_number)
        rows.add(window_number)
        LOGGER.debug("Recorded window %s for %s", window_number, user_id)
        return RecordOutcome.CONFIRMED

    async def fetch_opened(self, user_id: str) -> list[int]:
        await asyncio.sleep(0)
        if not self.reachable:
            raise TransientBackendError("Network request failed")
        return self.rows_for(user_id)

    async def aclose(self) -> None:
        self.closed = True

    def _report_duplicate(self, user_id: str, window_number: int) -> RecordOutcome:
        if self.duplicate_style == "code":
            raise BackendError(
                f'duplicate key for ("{user_id}", {window_number})', code="23505", status=409
            )
        if self.duplicate_style == "message":
            raise BackendError('duplicate key value violates unique constraint "unique_friend_window"')
        return RecordOutcome.DUPLICATE

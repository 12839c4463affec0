"""Shared test helpers and stub classes."""

from __future__ import annotations

USER_ID = "friend-1"


class StepClock:
    """Deterministic millisecond clock advancing by ``step`` per reading."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 5) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


class StatusRecorder:
    """Status subscriber collecting every transition it sees."""

    def __init__(self) -> None:
        self.seen: list = []

    def __call__(self, status) -> None:
        self.seen.append(status)

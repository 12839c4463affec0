"""At-most-one-in-flight wrapper around a coroutine factory."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, TypeVar

__all__ = ["SingleFlight"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Runs ``factory()`` as a task, sharing that task until it finishes.

    ``on_start`` is invoked synchronously whenever a new task is created, so
    callers can flip state before the event loop gets a chance to run it.
    """

    def __init__(
        self,
        factory: Callable[[], Awaitable[T]],
        *,
        name: str = "single-flight",
        on_start: Callable[[], None] | None = None,
    ) -> None:
        self._factory = factory
        self._name = name
        self._on_start = on_start
        self._task: asyncio.Task[T] | None = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def task(self) -> asyncio.Task[T] | None:
        return self._task if self.in_flight else None

    def trigger(self, loop: asyncio.AbstractEventLoop | None = None) -> asyncio.Task[T]:
        """Return the running task, or start a new one on *loop* (default: running loop)."""

        if self._task is not None and not self._task.done():
            LOGGER.debug("%s already in flight; reusing it", self._name)
            return self._task
        target = loop or asyncio.get_running_loop()
        if self._on_start is not None:
            self._on_start()
        task = target.create_task(self._factory(), name=self._name)
        task.add_done_callback(self._on_done)
        self._task = task
        return task

    async def run(self) -> T:
        """Trigger (or join) the in-flight task and await its result.

        The shared task is shielded, so cancelling one waiter does not cancel
        the work other waiters are joined to.
        """

        return await asyncio.shield(self.trigger())

    async def wait(self) -> None:
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _on_done(self, task: asyncio.Task[T]) -> None:
        if task.cancelled():
            LOGGER.debug("%s was cancelled", self._name)
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("%s failed", self._name, exc_info=error)

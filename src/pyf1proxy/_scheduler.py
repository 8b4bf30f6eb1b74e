"""Cancellable scheduled tasks.

Every timer an adapter or the hub owns (poll intervals, replay ticks,
reconnect delays, keepalives) is a :class:`ScheduledTask` registered on a
:class:`Scheduler`.  ``Scheduler.cancel_all`` cancels the underlying asyncio
tasks, so an invocation that is already in flight is interrupted at its next
await and no further invocation can start.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

_logger = logging.getLogger(__name__)


class ScheduledTask:
    """Run *fn* once after *delay*, or repeatedly every *interval* seconds.

    Periodic runs keep a fixed cadence: the time spent inside *fn* counts
    towards the next interval, and runs never overlap.  Exceptions raised by
    *fn* are logged and do not stop a periodic task.
    """

    def __init__(
        self,
        fn: Callable[[], Awaitable[None]],
        *,
        name: str,
        interval: float | None = None,
        delay: float = 0.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._fn = fn
        self._name = name
        self._interval = interval
        self._delay = delay
        self._logger = logger or _logger
        self._task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> ScheduledTask:
        if self.active:
            return self
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        return self

    def owns(self, task: asyncio.Task[object] | None) -> bool:
        return task is not None and self._task is task

    def detach(self) -> None:
        self._task = None

    def cancel(self) -> asyncio.Task[None] | None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        while True:
            started = loop.time()
            try:
                await self._fn()
            except asyncio.CancelledError:
                raise
            except Exception:
                self._logger.warning("Scheduled task %s failed", self._name, exc_info=True)
            if self._interval is None:
                return
            await asyncio.sleep(max(0.0, self._interval - (loop.time() - started)))


class Scheduler:
    """A set of scheduled tasks cancelled together."""

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger
        self._tasks: list[ScheduledTask] = []

    def every(
        self, interval: float, fn: Callable[[], Awaitable[None]], *, name: str, delay: float = 0.0
    ) -> ScheduledTask:
        return self._add(ScheduledTask(fn, name=name, interval=interval, delay=delay, logger=self._logger))

    def once(self, delay: float, fn: Callable[[], Awaitable[None]], *, name: str) -> ScheduledTask:
        return self._add(ScheduledTask(fn, name=name, delay=delay, logger=self._logger))

    def spawn(self, fn: Callable[[], Awaitable[None]], *, name: str) -> ScheduledTask:
        return self.once(0.0, fn, name=name)

    def _add(self, task: ScheduledTask) -> ScheduledTask:
        self._tasks = [t for t in self._tasks if t.active]
        self._tasks.append(task)
        return task.start()

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks if t.active)

    async def cancel_all(self) -> None:
        """Cancel every task and wait for them to unwind.

        Safe to call from inside one of the scheduled tasks: the calling task
        is detached and left to finish on its own.
        """
        tasks, self._tasks = self._tasks, []
        current = asyncio.current_task()
        pending: list[asyncio.Task[None]] = []
        for scheduled in tasks:
            if scheduled.owns(current):
                scheduled.detach()
                continue
            task = scheduled.cancel()
            if task is not None:
                pending.append(task)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

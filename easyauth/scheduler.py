"""Clock and cancelable scheduling primitives.

The engine never touches wall-clock time or event-loop timers directly.
It is handed a ``Clock`` and a ``Scheduler`` so that expiry and
auto-refresh can be driven by virtual time in tests.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Protocol


if TYPE_CHECKING:
    from collections.abc import Callable


logger = logging.getLogger("easyauth.scheduler")


class Clock(Protocol):
    """Returns the current time as epoch seconds."""

    def __call__(self) -> float: ...


def system_clock() -> float:
    """Wall-clock time."""
    return time.time()


class VirtualClock:
    """A manually advanced clock.

    Parameters
    ----------
    start : float
        Initial epoch seconds (default ``1_700_000_000``).
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move time forward and return the new time."""
        if seconds < 0:
            msg = "Virtual time cannot move backwards"
            raise ValueError(msg)
        self._now += seconds
        return self._now

    def set(self, now: float) -> None:
        """Jump to an absolute time."""
        self._now = now


class ScheduledTask:
    """Handle to a pending callback."""

    def __init__(self, when: float) -> None:
        self.when = when
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel`` was called before the callback ran."""
        return self._cancelled

    def cancel(self) -> None:
        """Prevent the callback from running. Idempotent."""
        self._cancelled = True


class Scheduler(ABC):
    """Runs callbacks after a delay.

    Callbacks may be plain functions or coroutine functions.
    """

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask:
        """Schedule ``callback`` to run ``delay`` seconds from now.

        Parameters
        ----------
        delay : float
            Seconds to wait; negative values are treated as zero.
        callback : callable
            Zero-argument function or coroutine function.

        Returns
        -------
        ScheduledTask
            A handle whose ``cancel()`` prevents the callback.
        """

    def close(self) -> None:  # noqa: B027
        """Cancel everything still pending."""


async def _invoke(callback: Callable[[], Any]) -> None:
    result = callback()
    if inspect.isawaitable(result):
        await result


class _AsyncioTask(ScheduledTask):
    def __init__(self, when: float) -> None:
        super().__init__(when)
        self.handle: asyncio.TimerHandle | None = None
        self.task: asyncio.Task[None] | None = None

    def cancel(self) -> None:
        super().cancel()
        if self.handle is not None:
            self.handle.cancel()


class AsyncioScheduler(Scheduler):
    """Schedules callbacks on the running asyncio event loop.

    Cancelling a handle stops a callback that has not started yet; a
    callback already running is left to finish.
    """

    def __init__(self) -> None:
        self._pending: set[_AsyncioTask] = set()
        self._running: set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        delay = max(0.0, delay)
        scheduled = _AsyncioTask(time.time() + delay)

        def _fire() -> None:
            self._pending.discard(scheduled)
            if scheduled.cancelled:
                return
            scheduled.task = loop.create_task(_invoke(callback))
            scheduled.task.add_done_callback(_log_task_error)
            self._running.add(scheduled.task)
            scheduled.task.add_done_callback(self._running.discard)

        scheduled.handle = loop.call_later(delay, _fire)
        self._pending.add(scheduled)
        return scheduled

    def close(self) -> None:
        for scheduled in list(self._pending):
            scheduled.cancel()
        self._pending.clear()


def _log_task_error(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Scheduled callback failed", exc_info=exc)


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by a ``VirtualClock``.

    Nothing runs until ``advance()`` is awaited; due callbacks then run
    in deadline order, each awaited to completion before the next.

    Parameters
    ----------
    clock : VirtualClock, optional
        Shared clock; a fresh one is created when omitted.
    """

    def __init__(self, clock: VirtualClock | None = None) -> None:
        self.clock = clock or VirtualClock()
        self._queue: list[tuple[float, int, ScheduledTask, Callable[[], Any]]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ScheduledTask:
        scheduled = ScheduledTask(self.clock() + max(0.0, delay))
        heapq.heappush(self._queue, (scheduled.when, next(self._seq), scheduled, callback))
        return scheduled

    @property
    def pending(self) -> list[ScheduledTask]:
        """Live (uncancelled) tasks in deadline order."""
        return [entry[2] for entry in sorted(self._queue) if not entry[2].cancelled]

    async def advance(self, seconds: float) -> int:
        """Advance virtual time, running every callback that comes due.

        Returns
        -------
        int
            Number of callbacks that ran.
        """
        target = self.clock() + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, scheduled, callback = heapq.heappop(self._queue)
            if scheduled.cancelled:
                continue
            self.clock.set(max(self.clock(), when))
            await _invoke(callback)
            ran += 1
        self.clock.set(max(self.clock(), target))
        return ran

    def close(self) -> None:
        for _, _, scheduled, _ in self._queue:
            scheduled.cancel()
        self._queue.clear()

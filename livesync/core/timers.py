"""
Timer scheduling for the live synchronization layer.

All periodic and delayed work (backoff retries, polling ticks, heartbeat,
health check) goes through a Scheduler so that:

- every timer yields a handle that can be captured and cancelled on teardown
- callbacks may be plain functions or coroutine functions
- tests can drive time explicitly with ManualScheduler instead of sleeping

Usage:
    scheduler = ManualScheduler()
    scheduler.call_later(1.0, retry)
    await scheduler.advance(1.0)   # runs retry() and awaits it
"""

from __future__ import annotations

import abc
import asyncio
import heapq
import inspect
import itertools
from typing import Any, Awaitable, Callable, List, Optional, Set, Tuple

import structlog

logger = structlog.get_logger(__name__)

Callback = Callable[[], Any]


class TimerHandle(abc.ABC):
    """Handle for a delayed or repeating callback."""

    @abc.abstractmethod
    def cancel(self) -> None:
        """Stop the timer. Safe to call more than once."""
        ...

    @property
    @abc.abstractmethod
    def cancelled(self) -> bool: ...


class Scheduler(abc.ABC):
    """Abstract timer and task scheduler bound to one event loop."""

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @abc.abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""
        ...

    @abc.abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run callback once after ``delay`` seconds."""
        ...

    @abc.abstractmethod
    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run callback every ``interval`` seconds until cancelled."""
        ...

    def spawn(self, coro: Awaitable[Any], name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine on the loop and keep a reference until it finishes."""
        task = asyncio.ensure_future(coro)
        if name and hasattr(task, "set_name"):
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "scheduler.task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    def _invoke(self, callback: Callback) -> Optional[asyncio.Task]:
        """Call ``callback``; spawn its result if it is awaitable."""
        try:
            result = callback()
        except Exception as exc:
            logger.error(
                "scheduler.callback_failed",
                callback=getattr(callback, "__qualname__", repr(callback)),
                error=str(exc),
            )
            return None
        if inspect.isawaitable(result):
            return self.spawn(result)
        return None

    @property
    def pending_tasks(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def drain(self, rounds: int = 50) -> None:
        """Let ready callbacks and spawned tasks run to completion."""
        for _ in range(rounds):
            await asyncio.sleep(0)
            pending = [t for t in self._tasks if not t.done()]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                continue
            await asyncio.sleep(0)
            if not any(not t.done() for t in self._tasks):
                return


# ==============================================================
# ASYNCIO SCHEDULER (production)
# ==============================================================


class _LoopTimer(TimerHandle):
    def __init__(self) -> None:
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        timer = _LoopTimer()

        def _fire() -> None:
            if not timer.cancelled:
                self._invoke(callback)

        timer._handle = asyncio.get_running_loop().call_later(max(delay, 0.0), _fire)
        return timer

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        timer = _LoopTimer()

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    result = callback()
                    if inspect.isawaitable(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    # Keep ticking; the next tick is the retry
                    logger.error(
                        "scheduler.tick_failed",
                        callback=getattr(callback, "__qualname__", repr(callback)),
                        error=str(exc),
                    )

        timer._task = self.spawn(_loop(), name="livesync-interval")
        return timer


# ==============================================================
# MANUAL SCHEDULER (tests, virtual time)
# ==============================================================


class _ManualTimer(TimerHandle):
    def __init__(self, interval: Optional[float]) -> None:
        self.interval = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler. Nothing fires until ``advance`` is awaited.

    Awaitable callbacks are awaited inline so their effects are visible
    as soon as ``advance`` returns.
    """

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = start
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, _ManualTimer, Callback]] = []
        self.scheduled_delays: List[float] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        timer = _ManualTimer(None)
        self.scheduled_delays.append(delay)
        heapq.heappush(self._queue, (self._now + max(delay, 0.0), next(self._seq), timer, callback))
        return timer

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        timer = _ManualTimer(interval)
        heapq.heappush(self._queue, (self._now + interval, next(self._seq), timer, callback))
        return timer

    @property
    def active_timers(self) -> int:
        return sum(1 for _, _, timer, _ in self._queue if not timer.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, firing every timer that comes due."""
        target = self._now + seconds
        await self.drain()
        while self._queue and self._queue[0][0] <= target:
            due, _, timer, callback = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = due
            if timer.interval is not None:
                heapq.heappush(
                    self._queue, (due + timer.interval, next(self._seq), timer, callback)
                )
            task = self._invoke(callback)
            if task is not None:
                await asyncio.gather(task, return_exceptions=True)
            await self.drain()
        self._now = target

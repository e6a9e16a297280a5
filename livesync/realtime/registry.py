"""
Owned resource registry for one session attachment.

Every timer, background task and channel handle created while attached is
recorded here, so leaving the session is a single teardown pass. Once torn
down the registry refuses new work: late callbacks that try to schedule
more timers get an already-cancelled handle instead.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from livesync.core.timers import Callback, Scheduler, TimerHandle

logger = structlog.get_logger(__name__)


class _DeadTimer(TimerHandle):
    def cancel(self) -> None:
        pass

    @property
    def cancelled(self) -> bool:
        return True


class AttachmentRegistry:
    def __init__(self, scheduler: Scheduler, generation: int) -> None:
        self.scheduler = scheduler
        self.generation = generation
        self._timers: Set[TimerHandle] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._channels: List[Any] = []
        self._finalizers: List[Callable[[], Any]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def timer_count(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled)

    @property
    def task_count(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    @property
    def channels(self) -> List[Any]:
        return list(self._channels)

    # ---- Timers ----

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        if self._closed:
            return _DeadTimer()
        holder: List[TimerHandle] = []

        def _fire() -> Any:
            if holder:
                self._timers.discard(holder[0])
            if self._closed:
                return None
            return self._run(callback)

        handle = self.scheduler.call_later(delay, _fire)
        holder.append(handle)
        self._timers.add(handle)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if self._closed:
            return _DeadTimer()

        def _tick() -> Any:
            if self._closed:
                return None
            return self._run(callback)

        handle = self.scheduler.call_every(interval, _tick)
        self._timers.add(handle)
        return handle

    def _run(self, callback: Callback) -> Any:
        # Coroutines started by timers belong to this attachment too
        result = callback()
        if inspect.isawaitable(result):
            return self.spawn(result, name="livesync-timer")
        return result

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancel()
        self._timers.discard(handle)

    # ---- Tasks ----

    def spawn(self, coro: Awaitable[Any], name: Optional[str] = None) -> Optional[asyncio.Task]:
        if self._closed:
            if inspect.iscoroutine(coro):
                coro.close()
            return None
        task = self.scheduler.spawn(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ---- Channels & finalizers ----

    def add_channel(self, handle: Any) -> None:
        self._channels.append(handle)

    def discard_channel(self, handle: Any) -> None:
        if handle in self._channels:
            self._channels.remove(handle)

    def on_teardown(self, finalizer: Callable[[], Any]) -> None:
        """Run ``finalizer`` (sync) during teardown, e.g. to drop a listener."""
        self._finalizers.append(finalizer)

    # ---- Teardown ----

    async def teardown(
        self, close_channel: Callable[[Any], Awaitable[None]]
    ) -> Dict[str, int]:
        """Cancel every timer and task, release every channel. Idempotent."""
        if self._closed:
            return {"timers": 0, "tasks": 0, "channels": 0}
        self._closed = True

        timers = [t for t in self._timers if not t.cancelled]
        for timer in timers:
            timer.cancel()
        self._timers.clear()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if not t.done() and t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        channels, self._channels = self._channels, []
        for handle in channels:
            try:
                await close_channel(handle)
            except Exception as exc:
                logger.error("registry.channel_close_failed", generation=self.generation, error=str(exc))

        for finalizer in self._finalizers:
            try:
                finalizer()
            except Exception as exc:
                logger.error("registry.finalizer_failed", generation=self.generation, error=str(exc))
        self._finalizers.clear()

        counts = {"timers": len(timers), "tasks": len(tasks), "channels": len(channels)}
        logger.info("registry.teardown", generation=self.generation, **counts)
        return counts

"""Fallback polling: periodic re-fetch while push delivery is unreliable."""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import structlog

from livesync.core.metrics import record_poll_tick
from livesync.core.timers import TimerHandle
from livesync.realtime.registry import AttachmentRegistry
from livesync.schemas import ResourceKind

logger = structlog.get_logger(__name__)

Refresh = Callable[[ResourceKind, str], Awaitable[bool]]


class PollingFallbackController:
    """
    At most one interval timer per kind. ``activate`` checks the per-kind
    flag before creating a timer, so repeated DEGRADED signals never stack
    pollers.
    """

    def __init__(
        self,
        registry: AttachmentRegistry,
        refresh: Refresh,
        intervals_ms: Optional[Dict[ResourceKind, int]] = None,
    ) -> None:
        self.registry = registry
        self._refresh = refresh
        self.intervals_ms: Dict[ResourceKind, int] = dict(intervals_ms or {})
        self._timers: Dict[ResourceKind, TimerHandle] = {}

    def is_active(self, kind: ResourceKind) -> bool:
        return kind in self._timers

    @property
    def active_kinds(self) -> List[ResourceKind]:
        return list(self._timers)

    def activate(self, kind: ResourceKind, interval_ms: Optional[int] = None) -> bool:
        """Start polling ``kind``. Returns False if it was already active."""
        if kind in self._timers:
            return False
        interval_ms = interval_ms or self.intervals_ms.get(kind, 5000)
        self._timers[kind] = self.registry.call_every(
            interval_ms / 1000.0, lambda: self._tick(kind)
        )
        logger.info("polling.activated", kind=kind.value, interval_ms=interval_ms)
        return True

    def activate_all(self, kinds: Iterable[ResourceKind]) -> int:
        return sum(1 for kind in kinds if self.activate(kind))

    def deactivate(self, kind: ResourceKind) -> bool:
        timer = self._timers.pop(kind, None)
        if timer is None:
            return False
        self.registry.cancel(timer)
        logger.info("polling.deactivated", kind=kind.value)
        return True

    def deactivate_all(self) -> None:
        for kind in list(self._timers):
            self.deactivate(kind)

    async def _tick(self, kind: ResourceKind) -> None:
        record_poll_tick(kind.value)
        await self._refresh(kind, "poll")

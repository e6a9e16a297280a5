"""Health check loop: the recovery path for groups past the backoff cap."""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import structlog

from livesync.core.timers import TimerHandle
from livesync.realtime.registry import AttachmentRegistry

logger = structlog.get_logger(__name__)


class HealthCheckLoop:
    """Every interval, re-arm the attachment if connectivity is degraded."""

    def __init__(
        self,
        registry: AttachmentRegistry,
        is_degraded: Callable[[], bool],
        rearm: Callable[[], Awaitable[None]],
        interval_ms: int = 60000,
    ) -> None:
        self.registry = registry
        self._is_degraded = is_degraded
        self._rearm = rearm
        self.interval_ms = interval_ms
        self._timer: Optional[TimerHandle] = None
        self.rearms = 0

    def start(self) -> None:
        if self._timer is None:
            self._timer = self.registry.call_every(self.interval_ms / 1000.0, self.check)

    async def check(self) -> bool:
        if not self._is_degraded():
            return False
        self.rearms += 1
        logger.info("health_check.rearm", count=self.rearms)
        await self._rearm()
        return True

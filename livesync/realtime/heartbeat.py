"""Participant heartbeat: keeps ``last_seen`` fresh while attached."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

import structlog

from livesync.core.metrics import record_heartbeat_failure
from livesync.core.timers import TimerHandle
from livesync.infra.store import RemoteStore
from livesync.realtime.registry import AttachmentRegistry
from livesync.schemas import utcnow
from livesync.services.participants import touch_last_seen

logger = structlog.get_logger(__name__)


class Heartbeat:
    def __init__(
        self,
        registry: AttachmentRegistry,
        store: RemoteStore,
        participant_id: str,
        interval_ms: int = 30000,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.registry = registry
        self.store = store
        self.participant_id = participant_id
        self.interval_ms = interval_ms
        self._clock = clock
        self._timer: Optional[TimerHandle] = None
        self.beats = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def start(self) -> None:
        if self.running:
            return
        self._timer = self.registry.call_every(self.interval_ms / 1000.0, self.beat)

    async def beat(self) -> bool:
        """One heartbeat. Failures are logged and left for the next tick."""
        try:
            await touch_last_seen(self.store, self.participant_id, self._clock())
        except Exception as exc:
            self.failures += 1
            record_heartbeat_failure()
            logger.warning(
                "heartbeat.failed", participant_id=self.participant_id, error=str(exc)
            )
            return False
        self.beats += 1
        logger.debug("heartbeat.sent", participant_id=self.participant_id)
        return True

"""
Reconnection supervisor: exponential backoff per subscription group.

One group per resource kind. A DEGRADED channel schedules a resubscription
after ``min(base * 2**n, max)`` ms where n counts consecutive failed
attempts. Past the attempt cap the group is EXHAUSTED and stays down until
the health check re-arms it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

import structlog

from livesync.core.errors import ChannelDegradedError
from livesync.core.metrics import record_reconnect
from livesync.core.timers import TimerHandle
from livesync.realtime.registry import AttachmentRegistry
from livesync.schemas import ResourceKind

logger = structlog.get_logger(__name__)

Resubscribe = Callable[[ResourceKind], Awaitable[None]]


class GroupState(str, Enum):
    IDLE = "IDLE"
    BACKOFF = "BACKOFF"
    RETRYING = "RETRYING"
    SUBSCRIBED = "SUBSCRIBED"
    EXHAUSTED = "EXHAUSTED"


DEGRADED_STATES = (GroupState.BACKOFF, GroupState.RETRYING, GroupState.EXHAUSTED)


@dataclass
class GroupStatus:
    kind: ResourceKind
    state: GroupState = GroupState.IDLE
    attempts: int = 0
    timer: Optional[TimerHandle] = None
    delays_ms: List[int] = field(default_factory=list)
    error: Optional[ChannelDegradedError] = None


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 30000) -> int:
    """Delay before retry number ``attempt + 1`` (``attempt`` starts at 0)."""
    return min(base_ms * (2 ** attempt), max_ms)


class ReconnectionSupervisor:
    def __init__(
        self,
        registry: AttachmentRegistry,
        resubscribe: Resubscribe,
        base_ms: int = 1000,
        max_ms: int = 30000,
        max_attempts: int = 5,
    ) -> None:
        self.registry = registry
        self._resubscribe = resubscribe
        self.base_ms = base_ms
        self.max_ms = max_ms
        self.max_attempts = max_attempts
        self._groups: Dict[ResourceKind, GroupStatus] = {}

    def group(self, kind: ResourceKind) -> GroupStatus:
        if kind not in self._groups:
            self._groups[kind] = GroupStatus(kind=kind)
        return self._groups[kind]

    def state(self, kind: ResourceKind) -> GroupState:
        return self.group(kind).state

    def attempts(self, kind: ResourceKind) -> int:
        return self.group(kind).attempts

    def is_degraded(self) -> bool:
        return any(g.state in DEGRADED_STATES for g in self._groups.values())

    def exhausted_kinds(self) -> List[ResourceKind]:
        return [k for k, g in self._groups.items() if g.state == GroupState.EXHAUSTED]

    def errors(self) -> List[ChannelDegradedError]:
        """Why each degraded group is down, most recent failure per group."""
        return [
            g.error
            for g in self._groups.values()
            if g.state in DEGRADED_STATES and g.error is not None
        ]

    def on_degraded(self, kind: ResourceKind, reason: Optional[str] = None) -> None:
        group = self.group(kind)
        group.error = ChannelDegradedError(kind.value, reason or "channel degraded")
        if group.state == GroupState.EXHAUSTED:
            return
        self._cancel_timer(group)
        if group.attempts >= self.max_attempts:
            group.state = GroupState.EXHAUSTED
            logger.warning(
                "reconnect.exhausted", kind=kind.value, attempts=group.attempts
            )
            return
        delay_ms = backoff_delay_ms(group.attempts, self.base_ms, self.max_ms)
        group.state = GroupState.BACKOFF
        group.delays_ms.append(delay_ms)
        group.timer = self.registry.call_later(delay_ms / 1000.0, lambda: self._retry(kind))
        logger.info(
            "reconnect.scheduled",
            kind=kind.value,
            attempt=group.attempts + 1,
            delay_ms=delay_ms,
        )

    async def _retry(self, kind: ResourceKind) -> None:
        group = self.group(kind)
        group.timer = None
        if group.state != GroupState.BACKOFF:
            return
        group.attempts += 1
        group.state = GroupState.RETRYING
        record_reconnect(kind.value, "backoff")
        logger.info("reconnect.retrying", kind=kind.value, attempt=group.attempts)
        await self._resubscribe(kind)

    def on_subscribed(self, kind: ResourceKind) -> bool:
        """Reset the group; True when this ends a degraded period."""
        group = self.group(kind)
        recovered = group.state in DEGRADED_STATES
        self._cancel_timer(group)
        group.attempts = 0
        group.state = GroupState.SUBSCRIBED
        group.error = None
        if recovered:
            logger.info("reconnect.recovered", kind=kind.value)
        return recovered

    def rearm(self, kind: ResourceKind) -> None:
        """
        Prepare a group for a forced resubscription: drop any pending
        backoff timer and clear the counter of an EXHAUSTED group.
        """
        group = self.group(kind)
        self._cancel_timer(group)
        if group.state == GroupState.EXHAUSTED:
            group.attempts = 0
        group.state = GroupState.RETRYING
        record_reconnect(kind.value, "rearm")

    def cancel_all(self) -> None:
        for group in self._groups.values():
            self._cancel_timer(group)

    def _cancel_timer(self, group: GroupStatus) -> None:
        if group.timer is not None:
            self.registry.cancel(group.timer)
            group.timer = None

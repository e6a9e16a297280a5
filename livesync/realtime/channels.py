"""
Push channel management.

Each handle wraps one store subscription and tracks its status:

    CONNECTING -> SUBSCRIBED            on acknowledgement
    CONNECTING/SUBSCRIBED -> DEGRADED   on TIMED_OUT, CHANNEL_ERROR or loss
    any -> CLOSED                       on explicit close

Change notifications only say "something in this collection changed"; the
manager forwards the kind and leaves the re-fetch to its owner.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import structlog

from livesync.core.metrics import record_transition
from livesync.infra.store import ChangeEvent, ChannelStatus, Filter, RemoteStore, Subscription
from livesync.schemas import ResourceKind

logger = structlog.get_logger(__name__)


class ChannelState(str, Enum):
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    DEGRADED = "DEGRADED"
    CLOSED = "CLOSED"


@dataclass(eq=False)
class ChannelHandle:
    kind: ResourceKind
    filter: Filter
    name: str
    status: ChannelState = ChannelState.CONNECTING
    subscription: Optional[Subscription] = None
    last_error: Optional[str] = None

    @property
    def closed(self) -> bool:
        return self.status == ChannelState.CLOSED


ChangeHandler = Callable[[ChannelHandle], None]
TransitionHandler = Callable[[ChannelHandle, ChannelState, ChannelState], None]


class ChannelManager:
    """Opens and closes uniquely named push subscriptions."""

    def __init__(
        self,
        store: RemoteStore,
        on_change: ChangeHandler,
        on_transition: TransitionHandler,
    ) -> None:
        self.store = store
        self._on_change = on_change
        self._on_transition = on_transition
        self._counter = itertools.count(1)
        self._handles: List[ChannelHandle] = []

    @property
    def handles(self) -> List[ChannelHandle]:
        return [h for h in self._handles if not h.closed]

    def handle_for(self, kind: ResourceKind) -> Optional[ChannelHandle]:
        """Most recent open handle of ``kind``."""
        for handle in reversed(self._handles):
            if handle.kind == kind and not handle.closed:
                return handle
        return None

    def _name(self, kind: ResourceKind, scope: Filter) -> str:
        return f"{kind.value}-{scope.scope_key()}-{next(self._counter)}-{uuid.uuid4().hex[:6]}"

    async def open(self, kind: ResourceKind, scope: Filter) -> ChannelHandle:
        handle = ChannelHandle(kind=kind, filter=scope, name=self._name(kind, scope))
        self._handles.append(handle)
        logger.info("channel_manager.open", kind=kind.value, channel=handle.name)
        try:
            handle.subscription = await self.store.subscribe(
                kind,
                scope,
                handle.name,
                on_status=lambda status, reason: self._status(handle, status, reason),
                on_change=lambda event: self._change(handle, event),
            )
        except Exception as exc:
            logger.warning(
                "channel_manager.open_failed",
                kind=kind.value,
                channel=handle.name,
                error=str(exc),
            )
            self._transition(handle, ChannelState.DEGRADED, str(exc))
        return handle

    async def close(self, handle: ChannelHandle) -> None:
        if handle.closed:
            return
        previous = handle.status
        handle.status = ChannelState.CLOSED
        record_transition(handle.kind.value, ChannelState.CLOSED.value)
        if handle in self._handles:
            self._handles.remove(handle)
        logger.info(
            "channel_manager.close",
            kind=handle.kind.value,
            channel=handle.name,
            previous=previous.value,
        )
        if handle.subscription is not None:
            try:
                await self.store.unsubscribe(handle.subscription)
            except Exception as exc:
                logger.warning(
                    "channel_manager.unsubscribe_failed",
                    channel=handle.name,
                    error=str(exc),
                )

    async def close_all(self) -> None:
        for handle in list(self._handles):
            await self.close(handle)

    # ---- Store callbacks ----

    def _status(self, handle: ChannelHandle, status: ChannelStatus, reason: Optional[str]) -> None:
        if handle.closed:
            return
        if status == ChannelStatus.SUBSCRIBED:
            if handle.status == ChannelState.CONNECTING:
                self._transition(handle, ChannelState.SUBSCRIBED, None)
        elif status in (ChannelStatus.TIMED_OUT, ChannelStatus.CHANNEL_ERROR, ChannelStatus.CLOSED):
            # A CLOSED report we did not ask for is a lost channel
            if handle.status in (ChannelState.CONNECTING, ChannelState.SUBSCRIBED):
                self._transition(handle, ChannelState.DEGRADED, reason or status.value)

    def _change(self, handle: ChannelHandle, event: ChangeEvent) -> None:
        if handle.closed:
            return
        logger.debug(
            "channel_manager.change",
            kind=handle.kind.value,
            channel=handle.name,
            event_type=event.event_type,
        )
        self._on_change(handle)

    def _transition(self, handle: ChannelHandle, new: ChannelState, reason: Optional[str]) -> None:
        old = handle.status
        handle.status = new
        handle.last_error = reason
        record_transition(handle.kind.value, new.value)
        log = logger.warning if new == ChannelState.DEGRADED else logger.info
        log(
            "channel_manager.transition",
            kind=handle.kind.value,
            channel=handle.name,
            old=old.value,
            new=new.value,
            reason=reason,
        )
        try:
            self._on_transition(handle, old, new)
        except Exception as exc:
            logger.error(
                "channel_manager.transition_handler_failed",
                channel=handle.name,
                error=str(exc),
            )

"""
LiveSession: keeps a local projection of one session in sync with the store.

Attaching loads every collection, opens one push channel per collection and
starts the background timers (heartbeat for participants, health check for
everyone). Push events trigger full re-fetches. When a channel degrades,
polling takes over for every collection and the reconnection supervisor
retries with exponential backoff; the health check re-arms groups that ran
out of attempts.

Everything an attachment creates is owned by its AttachmentRegistry and is
released by a single teardown. Callbacks carry the generation they were
created for and do nothing once it has been superseded.

Usage:
    live = LiveSession(store, identity, role=SyncRole.PARTICIPANT)
    await live.attach_to_session("ABC123", participant_name="Ada")
    live.on_snapshot_changed(ResourceKind.TASKS, render)
    await live.toggle_progress(task_id)
    await live.detach_from_session()
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union

import structlog

from livesync.core.errors import (
    ChannelDegradedError,
    InputValidationError,
    LiveSyncError,
    NotAttachedError,
    TransientNetworkError,
    require_text,
)
from livesync.core.settings import Settings, get_settings
from livesync.core.timers import AsyncioScheduler, Scheduler
from livesync.infra.identity import (
    IdentityStore,
    InMemoryIdentityStore,
    participant_id_key,
    participant_name_key,
)
from livesync.infra.store import RemoteStore, Row
from livesync.realtime.channels import ChannelHandle, ChannelManager, ChannelState
from livesync.realtime.fetcher import Fetcher
from livesync.realtime.health import HealthCheckLoop
from livesync.realtime.heartbeat import Heartbeat
from livesync.realtime.polling import PollingFallbackController
from livesync.realtime.projection import ProjectionStore, SnapshotListener
from livesync.realtime.reconnect import GroupState, ReconnectionSupervisor
from livesync.realtime.registry import AttachmentRegistry
from livesync.realtime.scope import SyncRole, SyncScope
from livesync.realtime.summary import present_participants
from livesync.schemas import LIVE_KINDS, Participant, ProgressRecord, ResourceKind, Session, utcnow
from livesync.services.participants import mark_offline, resolve_participant, toggle_progress
from livesync.services.sessions import SessionService, normalize_code

logger = structlog.get_logger(__name__)


class Attachment:
    """Components and state of one attach, owned by one registry."""

    def __init__(
        self,
        owner: "LiveSession",
        generation: int,
        session: Session,
        participant: Optional[Participant],
    ) -> None:
        config = owner.config
        self.generation = generation
        self.session = session
        self.participant = participant
        self.scope = SyncScope(
            owner.role, session.id, participant.id if participant is not None else None
        )
        self.registry = AttachmentRegistry(owner.scheduler, generation)
        self.fetcher = Fetcher(
            owner.store, self.scope, owner.projection, generation, owner.is_current
        )
        self.channels = ChannelManager(
            owner.store,
            on_change=lambda handle: owner._on_channel_change(self, handle),
            on_transition=lambda handle, old, new: owner._on_transition(self, handle, old, new),
        )
        self.supervisor = ReconnectionSupervisor(
            self.registry,
            lambda kind: owner._reopen(self, kind),
            base_ms=config.BACKOFF_BASE_MS,
            max_ms=config.BACKOFF_MAX_MS,
            max_attempts=config.MAX_RECONNECT_ATTEMPTS,
        )
        self.polling = PollingFallbackController(
            self.registry,
            self.fetcher.refresh,
            {
                ResourceKind.TASKS: config.POLL_TASKS_MS,
                ResourceKind.PARTICIPANTS: config.POLL_PARTICIPANTS_MS,
                ResourceKind.PROGRESS: config.POLL_PROGRESS_MS,
            },
        )
        self.heartbeat: Optional[Heartbeat] = None
        if participant is not None:
            self.heartbeat = Heartbeat(
                self.registry,
                owner.store,
                participant.id,
                interval_ms=config.HEARTBEAT_MS,
                clock=owner.clock,
            )
        self.health = HealthCheckLoop(
            self.registry,
            self.supervisor.is_degraded,
            lambda: owner._rearm_all(self),
            interval_ms=config.HEALTH_CHECK_MS,
        )
        # Participant ids the coordinator's progress channel is scoped to
        self.progress_ids: Tuple[str, ...] = ()
        # At most one reopen in flight per group
        self.reopen_locks: Dict[ResourceKind, asyncio.Lock] = {
            kind: asyncio.Lock() for kind in LIVE_KINDS
        }

    def channel_states(self) -> Dict[ResourceKind, ChannelState]:
        return {h.kind: h.status for h in self.channels.handles}


class LiveSession:
    def __init__(
        self,
        store: RemoteStore,
        identity: Optional[IdentityStore] = None,
        role: Union[SyncRole, str] = SyncRole.PARTICIPANT,
        config: Optional[Settings] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.identity = identity if identity is not None else InMemoryIdentityStore()
        self.role = SyncRole(role)
        self.config = config or get_settings()
        self.scheduler = scheduler or AsyncioScheduler()
        self.clock = clock
        self.sessions = SessionService(store)
        self.projection = ProjectionStore()
        self._generation = 0
        self._attachment: Optional[Attachment] = None
        self._attach_lock = asyncio.Lock()
        self._toggle_lock = asyncio.Lock()

    async def __aenter__(self) -> "LiveSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.detach_from_session()

    # ---- State ----

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def attachment(self) -> Optional[Attachment]:
        return self._attachment

    @property
    def session(self) -> Optional[Session]:
        return self._attachment.session if self._attachment else None

    @property
    def participant(self) -> Optional[Participant]:
        return self._attachment.participant if self._attachment else None

    def is_current(self, generation: int) -> bool:
        return self._attachment is not None and generation == self._generation

    def _alive(self, att: Attachment) -> bool:
        return self.is_current(att.generation) and not att.registry.closed

    def _require(self, operation: str) -> Attachment:
        if self._attachment is None:
            raise NotAttachedError(operation)
        return self._attachment

    # ---- Upward API ----

    async def attach_to_session(self, code: str, participant_name: Optional[str] = None) -> Session:
        """
        Attach to the session with join ``code``, replacing any current one.

        Raises InputValidationError for a blank code or name (or a participant
        with nothing to restore and no name), SessionNotFoundError for an
        unknown code and TransientNetworkError when the store is unreachable.
        """
        code = normalize_code(code)
        if participant_name is not None:
            participant_name = require_text("participant_name", participant_name)
        if (
            self.role == SyncRole.PARTICIPANT
            and participant_name is None
            and not self.identity.get(participant_id_key(code))
            and not self.identity.get(participant_name_key(code))
        ):
            raise InputValidationError("participant_name", "required to join a session")

        async with self._attach_lock:
            await self._teardown("reattach")
            self._generation += 1
            generation = self._generation
            log = logger.bind(session_code=code, generation=generation, role=self.role.value)

            session = await self.sessions.get_session_by_code(code)
            participant = None
            if self.role == SyncRole.PARTICIPANT:
                participant = await resolve_participant(
                    self.store, self.identity, session, participant_name, self.clock()
                )

            att = Attachment(self, generation, session, participant)
            self._attachment = att

            applied = await att.fetcher.refresh_all("attach")
            if applied < len(LIVE_KINDS):
                log.warning("live_session.initial_load_incomplete", applied=applied)

            if self.role == SyncRole.COORDINATOR:
                att.progress_ids = tuple(self.projection.ids(ResourceKind.PARTICIPANTS))
                unsubscribe = self.projection.subscribe(
                    ResourceKind.PARTICIPANTS, lambda rows: self._on_membership(att, rows)
                )
                att.registry.on_teardown(unsubscribe)

            for kind in LIVE_KINDS:
                await self._reopen(att, kind)
            if att.heartbeat is not None:
                att.heartbeat.start()
            att.health.start()
            log.info(
                "live_session.attached",
                session_id=session.id,
                participant_id=participant.id if participant else None,
            )
        return session

    async def detach_from_session(self) -> None:
        async with self._attach_lock:
            await self._teardown("detach")

    def get_snapshot(self, kind: Union[ResourceKind, str]) -> List[Row]:
        return self.projection.snapshot(ResourceKind(kind))

    def on_snapshot_changed(
        self, kind: Union[ResourceKind, str], callback: SnapshotListener
    ) -> Callable[[], None]:
        return self.projection.subscribe(ResourceKind(kind), callback)

    async def toggle_progress(self, task_id: str) -> ProgressRecord:
        """
        Flip the local participant's completion of ``task_id``.

        Store failures surface as TransientNetworkError; the projection is
        refreshed from the store after a successful write.
        """
        att = self._require("toggle_progress")
        if att.participant is None:
            raise NotAttachedError("toggle_progress")
        task_id = require_text("task_id", task_id)
        async with self._toggle_lock:
            try:
                row = await toggle_progress(self.store, att.participant.id, task_id, self.clock())
            except TransientNetworkError as exc:
                logger.warning("live_session.toggle_failed", task_id=task_id, error=str(exc))
                raise
            except LiveSyncError as exc:
                logger.warning("live_session.toggle_failed", task_id=task_id, error=str(exc))
                raise TransientNetworkError("toggle_progress", ResourceKind.PROGRESS.value, cause=exc) from exc
        if self._alive(att):
            await att.fetcher.refresh(ResourceKind.PROGRESS, "toggle")
        return row

    def is_connection_degraded(self) -> bool:
        att = self._attachment
        return att is not None and att.supervisor.is_degraded()

    def connection_errors(self) -> List[ChannelDegradedError]:
        """Latest failure of every subscription group that is currently down."""
        att = self._attachment
        return att.supervisor.errors() if att is not None else []

    def participant_count(self) -> int:
        """
        Participants currently in the session. Participants see the online
        count they fetch; coordinators apply the presence TTL to ``last_seen``.
        """
        rows = self.projection.snapshot(ResourceKind.PARTICIPANTS)
        if self.role == SyncRole.PARTICIPANT:
            return len(rows)
        return len(present_participants(rows, self.config.PRESENCE_TTL_SEC, self.clock()))

    # ---- Channel callbacks ----

    def _on_channel_change(self, att: Attachment, handle: ChannelHandle) -> None:
        if not self._alive(att):
            return
        att.registry.spawn(
            att.fetcher.refresh(handle.kind, "push"), name=f"refresh-{handle.kind.value}"
        )

    def _on_transition(
        self, att: Attachment, handle: ChannelHandle, old: ChannelState, new: ChannelState
    ) -> None:
        if not self._alive(att):
            return
        kind = handle.kind
        if new == ChannelState.SUBSCRIBED:
            # Writes made while the channel was joining were never pushed
            recovered = att.supervisor.on_subscribed(kind)
            att.registry.spawn(
                att.fetcher.refresh(kind, "recovered" if recovered else "subscribed"),
                name=f"refresh-{kind.value}",
            )
            if (
                recovered
                and self.config.POLL_STOP_ON_RECOVERY
                and not att.supervisor.is_degraded()
            ):
                att.polling.deactivate_all()
        elif new == ChannelState.DEGRADED:
            if att.polling.activate_all(LIVE_KINDS):
                logger.warning(
                    "live_session.polling_fallback",
                    generation=att.generation,
                    trigger=kind.value,
                    reason=handle.last_error,
                )
            att.supervisor.on_degraded(kind, handle.last_error)

    def _on_membership(self, att: Attachment, rows: List[Row]) -> None:
        if not self._alive(att):
            return
        ids = tuple(sorted(r["id"] for r in rows))
        if ids == att.progress_ids:
            return
        att.progress_ids = ids
        logger.info(
            "live_session.membership_changed", generation=att.generation, participants=len(ids)
        )
        att.registry.spawn(self._rescope_progress(att), name="rescope-progress")

    async def _rescope_progress(self, att: Attachment) -> None:
        # A group waiting on backoff or the health check picks up the new
        # scope when it reopens
        if att.supervisor.state(ResourceKind.PROGRESS) not in (
            GroupState.BACKOFF,
            GroupState.EXHAUSTED,
        ):
            await self._reopen(att, ResourceKind.PROGRESS)
        if self._alive(att):
            await att.fetcher.refresh(ResourceKind.PROGRESS, "membership")

    # ---- Subscription groups ----

    async def _reopen(self, att: Attachment, kind: ResourceKind) -> None:
        """Replace the channel of ``kind`` with a fresh, uniquely named one."""
        if not self._alive(att):
            return
        async with att.reopen_locks[kind]:
            previous = att.channels.handle_for(kind)
            if previous is not None:
                att.registry.discard_channel(previous)
                await att.channels.close(previous)
            if not self._alive(att):
                return
            scope = att.scope.channel_filter(kind, att.progress_ids)
            if scope is None:
                # Nothing to watch yet; membership changes open it later
                att.supervisor.on_subscribed(kind)
                return
            handle = await att.channels.open(kind, scope)
            if att.registry.closed:
                await att.channels.close(handle)
                return
            att.registry.add_channel(handle)

    async def _rearm_all(self, att: Attachment) -> None:
        for kind in LIVE_KINDS:
            if not self._alive(att):
                return
            att.supervisor.rearm(kind)
            await self._reopen(att, kind)

    # ---- Teardown ----

    async def _teardown(self, reason: str) -> None:
        att = self._attachment
        if att is None:
            return
        self._attachment = None
        self._generation += 1
        att.supervisor.cancel_all()
        att.polling.deactivate_all()
        counts = await att.registry.teardown(att.channels.close)
        await att.channels.close_all()
        self.projection.clear()
        if att.participant is not None:
            try:
                await mark_offline(self.store, att.participant.id)
            except Exception as exc:
                logger.warning(
                    "live_session.mark_offline_failed",
                    participant_id=att.participant.id,
                    error=str(exc),
                )
        logger.info(
            "live_session.detached",
            reason=reason,
            session_code=att.session.code,
            generation=att.generation,
            **counts,
        )

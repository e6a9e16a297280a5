"""
Pull-based snapshot reads for one attachment.

A refresh fetches a collection and replaces it in the projection, unless the
attachment that requested it has been superseded in the meantime. Fetch
failures are logged and counted; the next natural trigger (push event, poll
tick, reconnect) is the retry.
"""

from __future__ import annotations

import time
from typing import Callable, Iterable, List, Optional

import structlog

from livesync.core.errors import TransientNetworkError
from livesync.core.metrics import record_fetch
from livesync.infra.store import Filter, RemoteStore, Row
from livesync.realtime.projection import ProjectionStore
from livesync.realtime.scope import SyncRole, SyncScope
from livesync.schemas import LIVE_KINDS, ResourceKind

logger = structlog.get_logger(__name__)


class Fetcher:
    def __init__(
        self,
        store: RemoteStore,
        scope: SyncScope,
        projection: ProjectionStore,
        generation: int,
        is_current: Callable[[int], bool],
    ) -> None:
        self.store = store
        self.scope = scope
        self.projection = projection
        self.generation = generation
        self._is_current = is_current

    async def participant_ids(self) -> List[str]:
        """All participant ids of the session, straight from the store."""
        rows = await self.store.fetch(
            ResourceKind.PARTICIPANTS, Filter.eq("session_id", self.scope.session_id)
        )
        return [r["id"] for r in rows]

    async def load(self, kind: ResourceKind, participant_ids: Optional[Iterable[str]] = None) -> List[Row]:
        """
        Read the current rows of ``kind`` for this scope.

        Raises TransientNetworkError on any store failure.
        """
        started = time.perf_counter()
        try:
            if (
                kind == ResourceKind.PROGRESS
                and self.scope.role == SyncRole.COORDINATOR
                and participant_ids is None
            ):
                participant_ids = await self.participant_ids()
            flt = self.scope.fetch_filter(kind, participant_ids or ())
            if flt is None:
                rows: List[Row] = []
            else:
                rows = await self.store.fetch(kind, flt, order_by=self.scope.order_by(kind))
        except TransientNetworkError:
            record_fetch(kind.value, time.perf_counter() - started, ok=False)
            raise
        except Exception as exc:
            record_fetch(kind.value, time.perf_counter() - started, ok=False)
            raise TransientNetworkError("fetch", kind.value, cause=exc) from exc
        record_fetch(kind.value, time.perf_counter() - started, ok=True)
        return rows

    async def refresh(self, kind: ResourceKind, trigger: str = "manual") -> bool:
        """Fetch ``kind`` and replace it in the projection. True if applied."""
        try:
            rows = await self.load(kind)
        except TransientNetworkError as exc:
            logger.warning(
                "fetcher.refresh_failed",
                kind=kind.value,
                trigger=trigger,
                generation=self.generation,
                error=str(exc),
            )
            return False
        if not self._is_current(self.generation):
            logger.debug(
                "fetcher.stale_result_dropped",
                kind=kind.value,
                trigger=trigger,
                generation=self.generation,
            )
            return False
        self.projection.replace(kind, rows)
        logger.debug(
            "fetcher.refreshed", kind=kind.value, trigger=trigger, rows=len(rows)
        )
        return True

    async def refresh_all(self, trigger: str = "manual") -> int:
        """Refresh every live collection in load order; returns how many applied."""
        applied = 0
        for kind in LIVE_KINDS:
            if await self.refresh(kind, trigger):
                applied += 1
        return applied

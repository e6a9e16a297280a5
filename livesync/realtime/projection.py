"""
In-memory projection of the attached session's collections.

The projection is replaced wholesale by fetch results; nothing merges push
payloads into it. Readers get ordered copies, never the live maps.
"""

from __future__ import annotations

from collections import Counter
from typing import Callable, Dict, List, Optional

import structlog

from livesync.infra.store import Row
from livesync.schemas import LIVE_KINDS, ResourceKind

logger = structlog.get_logger(__name__)

SnapshotListener = Callable[[List[Row]], None]

ORDERING: Dict[ResourceKind, str] = {
    ResourceKind.TASKS: "order_index",
    ResourceKind.PARTICIPANTS: "created_at",
    ResourceKind.PROGRESS: "updated_at",
}


def _sort_key(column: str) -> Callable[[Row], tuple]:
    def key(row: Row) -> tuple:
        value = row.get(column)
        return (value is None, value if value is not None else 0, str(row.get("id", "")))

    return key


class ProjectionStore:
    """Key-by-id snapshot per kind, with per-kind change listeners."""

    def __init__(self) -> None:
        self._maps: Dict[ResourceKind, Dict[str, Row]] = {k: {} for k in LIVE_KINDS}
        self._listeners: Dict[ResourceKind, List[SnapshotListener]] = {k: [] for k in LIVE_KINDS}
        self.versions: Counter = Counter()

    def replace(self, kind: ResourceKind, rows: List[Row]) -> None:
        """Replace the whole collection for ``kind`` and notify listeners."""
        self._maps[kind] = {row["id"]: dict(row) for row in rows}
        self.versions[kind] += 1
        self._notify(kind)

    def snapshot(self, kind: ResourceKind) -> List[Row]:
        rows = [dict(r) for r in self._maps[kind].values()]
        column = ORDERING.get(kind)
        if column:
            rows.sort(key=_sort_key(column))
        return rows

    def get(self, kind: ResourceKind, row_id: str) -> Optional[Row]:
        row = self._maps[kind].get(row_id)
        return dict(row) if row is not None else None

    def ids(self, kind: ResourceKind) -> List[str]:
        return sorted(self._maps[kind])

    def clear(self) -> None:
        """Discard every collection, notifying listeners of non-empty ones."""
        for kind in LIVE_KINDS:
            had_rows = bool(self._maps[kind])
            self._maps[kind] = {}
            if had_rows:
                self.versions[kind] += 1
                self._notify(kind)

    def subscribe(self, kind: ResourceKind, listener: SnapshotListener) -> Callable[[], None]:
        """Register ``listener`` for ``kind``; returns the unsubscribe callable."""
        self._listeners[kind].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[kind]:
                self._listeners[kind].remove(listener)

        return unsubscribe

    def _notify(self, kind: ResourceKind) -> None:
        if not self._listeners[kind]:
            return
        snapshot = self.snapshot(kind)
        for listener in list(self._listeners[kind]):
            try:
                listener(list(snapshot))
            except Exception as exc:
                logger.error(
                    "projection.listener_failed",
                    kind=kind.value,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(exc),
                )

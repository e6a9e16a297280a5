"""Attachment roles and the filters each role reads and subscribes with."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from livesync.infra.store import Filter
from livesync.schemas import ResourceKind


class SyncRole(str, Enum):
    PARTICIPANT = "participant"
    COORDINATOR = "coordinator"


@dataclass(frozen=True)
class SyncScope:
    role: SyncRole
    session_id: str
    participant_id: Optional[str] = None

    def order_by(self, kind: ResourceKind) -> Optional[str]:
        if kind == ResourceKind.TASKS:
            return "order_index"
        if kind == ResourceKind.PARTICIPANTS:
            return "created_at"
        return None

    def fetch_filter(
        self, kind: ResourceKind, participant_ids: Iterable[str] = ()
    ) -> Optional[Filter]:
        """
        Filter for reading ``kind``. None means the read is known to be
        empty (a coordinator with no participants has no progress to load).
        """
        if kind == ResourceKind.TASKS:
            return Filter.eq("session_id", self.session_id)
        if kind == ResourceKind.PARTICIPANTS:
            scoped = Filter.eq("session_id", self.session_id)
            if self.role == SyncRole.PARTICIPANT:
                return scoped.and_eq("is_online", True)
            return scoped
        if kind == ResourceKind.PROGRESS:
            if self.role == SyncRole.PARTICIPANT:
                return Filter.eq("participant_id", self.participant_id)
            ids = sorted(participant_ids)
            return Filter.in_("participant_id", ids) if ids else None
        raise ValueError(f"Not a live collection: {kind}")

    def channel_filter(
        self, kind: ResourceKind, participant_ids: Iterable[str] = ()
    ) -> Optional[Filter]:
        """Filter for the push channel of ``kind``; None means no channel."""
        if kind == ResourceKind.PARTICIPANTS:
            return Filter.eq("session_id", self.session_id)
        return self.fetch_filter(kind, participant_ids)

"""Completion figures derived from projection snapshots."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from livesync.infra.store import Row
from livesync.schemas import Participant, utcnow


def _completed_pairs(progress: Iterable[Row]) -> set:
    return {
        (r.get("participant_id"), r.get("task_id")) for r in progress if r.get("completed")
    }


def task_completion(
    task_id: str, progress: Iterable[Row], participants: Sequence[Row]
) -> Tuple[int, int]:
    """(participants who completed ``task_id``, participants in the session)."""
    done = _completed_pairs(progress)
    completed = sum(1 for p in participants if (p["id"], task_id) in done)
    return completed, len(participants)


def participant_completion(
    participant_id: str, tasks: Sequence[Row], progress: Iterable[Row]
) -> Tuple[int, int]:
    """(tasks ``participant_id`` completed, tasks in the session), e.g. 1/3."""
    done = _completed_pairs(progress)
    completed = sum(1 for t in tasks if (participant_id, t["id"]) in done)
    return completed, len(tasks)


def present_participants(
    participants: Iterable[Row], ttl_sec: int, now: Optional[datetime] = None
) -> List[Row]:
    """Participants flagged online whose last heartbeat is within ``ttl_sec``."""
    now = now or utcnow()
    return [
        row for row in participants if Participant.model_validate(row).is_present(now, ttl_sec)
    ]

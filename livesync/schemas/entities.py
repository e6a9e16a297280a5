"""Pydantic schemas for sessions, tasks, participants and progress records."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ResourceKind(str, Enum):
    """Entity collections held by the remote store (table names)."""

    SESSIONS = "sessions"
    TASKS = "tasks"
    PARTICIPANTS = "participants"
    PROGRESS = "progress"


# Collections kept live for an attached session, in load order.
LIVE_KINDS = (ResourceKind.TASKS, ResourceKind.PARTICIPANTS, ResourceKind.PROGRESS)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Row(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Session(_Row):
    id: str
    code: str = Field(..., min_length=1)
    title: str
    created_at: Optional[datetime] = None
    active: bool = True


class Task(_Row):
    id: str
    session_id: str
    title: str
    order_index: int
    created_at: Optional[datetime] = None


class Participant(_Row):
    id: str
    session_id: str
    name: str
    is_online: bool = False
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_present(self, now: datetime, ttl_sec: int) -> bool:
        """Online flag set and last heartbeat within ``ttl_sec``."""
        if not self.is_online or self.last_seen is None:
            return False
        last_seen = self.last_seen
        if last_seen.tzinfo is None:
            last_seen = last_seen.replace(tzinfo=timezone.utc)
        return (now - last_seen).total_seconds() <= ttl_sec


class ProgressRecord(_Row):
    id: str
    participant_id: str
    task_id: str
    completed: bool = False
    updated_at: Optional[datetime] = None

from livesync.schemas.entities import (
    LIVE_KINDS,
    Participant,
    ProgressRecord,
    ResourceKind,
    Session,
    Task,
    utcnow,
)

__all__ = [
    "LIVE_KINDS",
    "Participant",
    "ProgressRecord",
    "ResourceKind",
    "Session",
    "Task",
    "utcnow",
]

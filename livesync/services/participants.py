"""
Participant identity, presence and progress writes.

Participants are remembered per session code in local identity storage so a
reload restores the same participant (and therefore the same progress)
instead of creating a duplicate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog

from livesync.core.errors import InputValidationError
from livesync.infra.identity import IdentityStore, participant_id_key, participant_name_key
from livesync.infra.store import Filter, RemoteStore, Row
from livesync.schemas import Participant, ProgressRecord, ResourceKind, Session, utcnow

logger = structlog.get_logger(__name__)


async def resolve_participant(
    store: RemoteStore,
    identity: IdentityStore,
    session: Session,
    name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Participant:
    """
    Restore the remembered participant for ``session`` or create a new one.

    A remembered id that no longer exists in this session is forgotten. A new
    participant needs a name, either passed in or remembered from before.
    """
    now = now or utcnow()
    id_key = participant_id_key(session.code)
    name_key = participant_name_key(session.code)

    remembered_id = identity.get(id_key)
    if remembered_id:
        row = await store.fetch_one(
            ResourceKind.PARTICIPANTS,
            Filter.eq("id", remembered_id).and_eq("session_id", session.id),
        )
        if row is not None:
            row = await store.update(
                ResourceKind.PARTICIPANTS,
                remembered_id,
                {"is_online": True, "last_seen": now.isoformat()},
            )
            logger.info(
                "participants.restored",
                session_code=session.code,
                participant_id=remembered_id,
            )
            return Participant.model_validate(row)
        logger.info(
            "participants.stale_identity",
            session_code=session.code,
            participant_id=remembered_id,
        )
        identity.delete(id_key)

    display_name = (name or "").strip() or identity.get(name_key)
    if not display_name:
        raise InputValidationError("participant_name", "required to join a session")

    row = await store.insert(
        ResourceKind.PARTICIPANTS,
        {
            "session_id": session.id,
            "name": display_name,
            "is_online": True,
            "last_seen": now.isoformat(),
        },
    )
    identity.set(id_key, row["id"])
    identity.set(name_key, display_name)
    logger.info(
        "participants.created",
        session_code=session.code,
        participant_id=row["id"],
    )
    return Participant.model_validate(row)


async def touch_last_seen(
    store: RemoteStore, participant_id: str, now: Optional[datetime] = None
) -> Row:
    now = now or utcnow()
    return await store.update(
        ResourceKind.PARTICIPANTS,
        participant_id,
        {"is_online": True, "last_seen": now.isoformat()},
    )


async def mark_offline(store: RemoteStore, participant_id: str) -> Row:
    return await store.update(ResourceKind.PARTICIPANTS, participant_id, {"is_online": False})


async def toggle_progress(
    store: RemoteStore,
    participant_id: str,
    task_id: str,
    now: Optional[datetime] = None,
) -> ProgressRecord:
    """
    Flip the completion of ``task_id`` for ``participant_id``.

    The existing record is looked up in the store before writing; a record is
    only inserted (completed) when none exists, so the pair never has two.
    """
    now = now or utcnow()
    existing = await store.fetch_one(
        ResourceKind.PROGRESS,
        Filter.eq("participant_id", participant_id).and_eq("task_id", task_id),
    )
    if existing is not None:
        completed = not bool(existing.get("completed"))
        row = await store.update(
            ResourceKind.PROGRESS,
            existing["id"],
            {"completed": completed, "updated_at": now.isoformat()},
        )
    else:
        row = await store.insert(
            ResourceKind.PROGRESS,
            {
                "participant_id": participant_id,
                "task_id": task_id,
                "completed": True,
                "updated_at": now.isoformat(),
            },
        )
    logger.info(
        "participants.progress_toggled",
        participant_id=participant_id,
        task_id=task_id,
        completed=row.get("completed"),
    )
    return ProgressRecord.model_validate(row)

"""Coordinator-side session and task management."""

from __future__ import annotations

import secrets
import string
from typing import Callable, List, Optional

import structlog

from livesync.core.errors import (
    InputValidationError,
    SessionNotFoundError,
    StoreRequestError,
    require_text,
)
from livesync.infra.store import Filter, RemoteStore
from livesync.schemas import ResourceKind, Session, Task

logger = structlog.get_logger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5


def generate_session_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: Optional[str]) -> str:
    return require_text("session_code", code).upper()


class SessionService:
    def __init__(
        self,
        store: RemoteStore,
        code_generator: Callable[[], str] = generate_session_code,
    ) -> None:
        self.store = store
        self._generate_code = code_generator

    async def create_session(self, title: str) -> Session:
        title = require_text("title", title)
        last_error: Optional[StoreRequestError] = None
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = self._generate_code()
            try:
                row = await self.store.insert(
                    ResourceKind.SESSIONS, {"title": title, "code": code, "active": True}
                )
            except StoreRequestError as exc:
                if exc.status_code != 409:
                    raise
                last_error = exc
                logger.info("sessions.code_collision", code=code, attempt=attempt)
                continue
            session = Session.model_validate(row)
            logger.info("sessions.created", session_id=session.id, code=session.code)
            return session
        assert last_error is not None
        raise last_error

    async def list_sessions(self) -> List[Session]:
        rows = await self.store.fetch(ResourceKind.SESSIONS, order_by="-created_at")
        return [Session.model_validate(r) for r in rows]

    async def get_session_by_code(self, code: str) -> Session:
        code = normalize_code(code)
        row = await self.store.fetch_one(
            ResourceKind.SESSIONS, Filter.eq("code", code).and_eq("active", True)
        )
        if row is None:
            raise SessionNotFoundError(code)
        return Session.model_validate(row)

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete(ResourceKind.SESSIONS, session_id)
        logger.info("sessions.deleted", session_id=session_id)

    # ---- Tasks ----

    async def list_tasks(self, session_id: str) -> List[Task]:
        rows = await self.store.fetch(
            ResourceKind.TASKS, Filter.eq("session_id", session_id), order_by="order_index"
        )
        return [Task.model_validate(r) for r in rows]

    async def add_task(self, session_id: str, title: str) -> Task:
        title = require_text("title", title)
        existing = await self.store.fetch(
            ResourceKind.TASKS, Filter.eq("session_id", session_id), order_by="-order_index"
        )
        next_index = (int(existing[0]["order_index"]) + 1) if existing else 0
        row = await self.store.insert(
            ResourceKind.TASKS,
            {"session_id": session_id, "title": title, "order_index": next_index},
        )
        logger.info(
            "sessions.task_added", session_id=session_id, task_id=row["id"], order_index=next_index
        )
        return Task.model_validate(row)

    async def rename_task(self, task_id: str, title: str) -> Task:
        title = require_text("title", title)
        row = await self.store.update(ResourceKind.TASKS, task_id, {"title": title})
        return Task.model_validate(row)

    async def delete_task(self, task_id: str) -> None:
        await self.store.delete(ResourceKind.TASKS, task_id)
        logger.info("sessions.task_deleted", task_id=task_id)

    # ---- Progress ----

    async def reset_progress(self, session_id: str) -> int:
        """Delete every progress record of the session's participants."""
        if not session_id:
            raise InputValidationError("session_id", "must not be blank")
        participants = await self.store.fetch(
            ResourceKind.PARTICIPANTS, Filter.eq("session_id", session_id)
        )
        ids = [p["id"] for p in participants]
        if not ids:
            return 0
        records = await self.store.fetch(ResourceKind.PROGRESS, Filter.in_("participant_id", ids))
        for record in records:
            await self.store.delete(ResourceKind.PROGRESS, record["id"])
        logger.info("sessions.progress_reset", session_id=session_id, deleted=len(records))
        return len(records)

"""Tests for session, task and participant services."""

import pytest

from livesync.core.errors import InputValidationError, SessionNotFoundError, StoreRequestError
from livesync.infra.identity import InMemoryIdentityStore
from livesync.schemas import ResourceKind, Session
from livesync.services import (
    SessionService,
    generate_session_code,
    resolve_participant,
    toggle_progress,
)


def test_generated_codes_are_six_uppercase_characters():
    code = generate_session_code()
    assert len(code) == 6
    assert code == code.upper()
    assert code.isalnum()


@pytest.mark.asyncio
async def test_create_session_retries_on_code_collision(store):
    await store.insert(ResourceKind.SESSIONS, {"code": "AAAAAA", "title": "Taken"})
    codes = iter(["AAAAAA", "BBBBBB"])
    service = SessionService(store, code_generator=lambda: next(codes))

    session = await service.create_session("  Workshop  ")

    assert session.code == "BBBBBB"
    assert session.title == "Workshop"
    assert session.active is True


@pytest.mark.asyncio
async def test_create_session_gives_up_after_repeated_collisions(store):
    await store.insert(ResourceKind.SESSIONS, {"code": "AAAAAA", "title": "Taken"})
    service = SessionService(store, code_generator=lambda: "AAAAAA")
    with pytest.raises(StoreRequestError):
        await service.create_session("Workshop")
    assert store.calls[("insert", "sessions")] == 1 + 5


@pytest.mark.asyncio
async def test_blank_titles_are_rejected(store):
    service = SessionService(store)
    with pytest.raises(InputValidationError):
        await service.create_session("   ")
    with pytest.raises(InputValidationError):
        await service.add_task("s1", "")
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_lookup_normalizes_code_and_skips_inactive(store, seed):
    await seed(code="ABC123")
    await store.insert(ResourceKind.SESSIONS, {"code": "OLD999", "title": "Old", "active": False})
    service = SessionService(store)

    assert (await service.get_session_by_code(" abc123 ")).code == "ABC123"
    with pytest.raises(SessionNotFoundError):
        await service.get_session_by_code("OLD999")


@pytest.mark.asyncio
async def test_tasks_append_rename_and_delete(store):
    service = SessionService(store)
    session = await service.create_session("Workshop")

    first = await service.add_task(session.id, "One")
    second = await service.add_task(session.id, "Two")
    assert (first.order_index, second.order_index) == (0, 1)

    renamed = await service.rename_task(first.id, "Uno")
    assert renamed.title == "Uno"
    await service.delete_task(second.id)
    third = await service.add_task(session.id, "Three")
    assert third.order_index == 1
    assert [t.title for t in await service.list_tasks(session.id)] == ["Uno", "Three"]


@pytest.mark.asyncio
async def test_reset_progress_and_delete_session(store, seed):
    session_row, tasks = await seed()
    session = Session.model_validate(session_row)
    service = SessionService(store)
    participant = await resolve_participant(store, InMemoryIdentityStore(), session, "Ada")
    await toggle_progress(store, participant.id, tasks[0]["id"])
    await toggle_progress(store, participant.id, tasks[1]["id"])

    assert await service.reset_progress(session.id) == 2
    assert store.rows(ResourceKind.PROGRESS) == []

    await service.delete_session(session.id)
    assert await service.list_sessions() == []
    assert store.rows(ResourceKind.PARTICIPANTS) == []


@pytest.mark.asyncio
async def test_resolve_participant_needs_a_name(store, seed):
    session_row, _ = await seed()
    with pytest.raises(InputValidationError):
        await resolve_participant(
            store, InMemoryIdentityStore(), Session.model_validate(session_row), None
        )

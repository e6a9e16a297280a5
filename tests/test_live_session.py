"""Tests for LiveSession attach/detach, generation guard and toggling."""

import pytest

from livesync.core.errors import (
    InputValidationError,
    NotAttachedError,
    SessionNotFoundError,
    TransientNetworkError,
)
from livesync.infra.store import Filter
from livesync.realtime import ChannelState, SyncRole
from livesync.schemas import LIVE_KINDS, ResourceKind


@pytest.mark.asyncio
async def test_attach_loads_projection_and_opens_channels(store, scheduler, seed, make_live):
    session, tasks = await seed(tasks=3)
    live = make_live()

    attached = await live.attach_to_session("abc123", participant_name="Ada")
    await scheduler.drain()

    assert attached.id == session["id"]
    assert live.participant.name == "Ada"
    assert [t["id"] for t in live.get_snapshot(ResourceKind.TASKS)] == [t["id"] for t in tasks]
    assert live.participant_count() == 1
    assert live.attachment.channel_states() == {k: ChannelState.SUBSCRIBED for k in LIVE_KINDS}
    assert len(store.active_subscriptions()) == 3
    assert not live.is_connection_degraded()
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_blank_inputs_are_rejected_before_any_store_call(store, make_live):
    live = make_live()
    with pytest.raises(InputValidationError):
        await live.attach_to_session("   ", participant_name="Ada")
    with pytest.raises(InputValidationError):
        await live.attach_to_session("ABC123", participant_name="  ")
    with pytest.raises(InputValidationError):
        await live.attach_to_session("ABC123")
    assert sum(store.calls.values()) == 0


@pytest.mark.asyncio
async def test_unknown_code_is_not_found(seed, make_live):
    await seed(code="ABC123")
    live = make_live()
    with pytest.raises(SessionNotFoundError):
        await live.attach_to_session("ZZZ999", participant_name="Ada")
    assert live.session is None


@pytest.mark.asyncio
async def test_detach_releases_everything_and_marks_offline(store, scheduler, seed, make_live):
    await seed()
    live = make_live()
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()
    participant_id = live.participant.id
    assert scheduler.active_timers > 0

    await live.detach_from_session()

    assert live.session is None
    assert store.active_subscriptions() == []
    assert scheduler.active_timers == 0
    assert live.get_snapshot(ResourceKind.TASKS) == []
    offline = await store.fetch_one(ResourceKind.PARTICIPANTS, Filter.eq("id", participant_id))
    assert offline["is_online"] is False


@pytest.mark.asyncio
async def test_superseded_generation_cannot_mutate_projection(store, scheduler, seed, make_live):
    await seed(code="AAA111", tasks=2)
    await seed(code="BBB222", tasks=1)
    live = make_live()
    await live.attach_to_session("AAA111", participant_name="Ada")
    await scheduler.drain()
    stale = live.attachment
    first_generation = live.generation

    await live.attach_to_session("BBB222", participant_name="Ada")
    await scheduler.drain()

    assert live.generation > first_generation
    assert stale.registry.closed
    assert await stale.fetcher.refresh(ResourceKind.TASKS, "late") is False
    assert len(live.get_snapshot(ResourceKind.TASKS)) == 1
    assert len(store.active_subscriptions()) == 3
    assert all(
        s.filter.matches({"session_id": live.session.id, "participant_id": live.participant.id})
        for s in store.active_subscriptions()
    )
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_toggle_twice_keeps_one_record(store, scheduler, seed, make_live):
    _, tasks = await seed()
    live = make_live()
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()

    first = await live.toggle_progress(tasks[0]["id"])
    second = await live.toggle_progress(tasks[0]["id"])
    await scheduler.drain()

    assert first.completed is True
    assert second.completed is False
    assert len(store.rows(ResourceKind.PROGRESS)) == 1
    snapshot = live.get_snapshot(ResourceKind.PROGRESS)
    assert [r["completed"] for r in snapshot] == [False]
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_toggle_failure_surfaces_as_transient(store, scheduler, seed, make_live):
    _, tasks = await seed()
    live = make_live()
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()

    store.fail_operation("insert", ResourceKind.PROGRESS)
    with pytest.raises(TransientNetworkError):
        await live.toggle_progress(tasks[0]["id"])
    assert live.session is not None
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_toggle_requires_participant_attachment(seed, scheduler, make_live):
    _, tasks = await seed()
    live = make_live()
    with pytest.raises(NotAttachedError):
        await live.toggle_progress(tasks[0]["id"])

    coordinator = make_live(role=SyncRole.COORDINATOR)
    await coordinator.attach_to_session("ABC123")
    await scheduler.drain()
    with pytest.raises(NotAttachedError):
        await coordinator.toggle_progress(tasks[0]["id"])
    await coordinator.detach_from_session()


@pytest.mark.asyncio
async def test_snapshot_listeners_fire_on_push(store, scheduler, seed, make_live):
    session, _ = await seed(tasks=1)
    live = make_live()
    seen = []
    live.on_snapshot_changed(ResourceKind.TASKS, lambda rows: seen.append(len(rows)))
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()

    await store.insert(
        ResourceKind.TASKS, {"session_id": session["id"], "title": "New", "order_index": 1}
    )
    await scheduler.drain()

    assert seen[-1] == 2
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_failed_initial_load_is_filled_in_by_push(store, scheduler, seed, make_live):
    session, _ = await seed(tasks=2)
    live = make_live()
    store.fail_operation("fetch", ResourceKind.TASKS)
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()
    assert live.get_snapshot(ResourceKind.TASKS) == []

    store.heal_operation("fetch", ResourceKind.TASKS)
    await store.insert(
        ResourceKind.TASKS, {"session_id": session["id"], "title": "Third", "order_index": 2}
    )
    await scheduler.drain()
    assert len(live.get_snapshot(ResourceKind.TASKS)) == 3
    await live.detach_from_session()

"""End-to-end scenarios across coordinator and participant views."""

import pytest

from livesync.infra.identity import InMemoryIdentityStore, participant_id_key
from livesync.infra.store import Filter
from livesync.realtime import SyncRole, participant_completion, task_completion
from livesync.schemas import LIVE_KINDS, ResourceKind


@pytest.mark.asyncio
async def test_coordinator_sees_participant_progress_via_push(store, scheduler, seed, make_live):
    _, tasks = await seed(code="ABC123", tasks=3)
    coordinator = make_live(role=SyncRole.COORDINATOR)
    await coordinator.attach_to_session("ABC123")
    await scheduler.drain()
    # No participants yet, so no progress channel
    assert len(store.active_subscriptions(ResourceKind.PROGRESS)) == 0

    participant = make_live(identity_store=InMemoryIdentityStore())
    await participant.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()
    ada = participant.participant

    await participant.toggle_progress(tasks[1]["id"])
    await scheduler.drain()

    view_tasks = coordinator.get_snapshot(ResourceKind.TASKS)
    view_progress = coordinator.get_snapshot(ResourceKind.PROGRESS)
    assert participant_completion(ada.id, view_tasks, view_progress) == (1, 3)
    assert task_completion(
        tasks[1]["id"], view_progress, coordinator.get_snapshot(ResourceKind.PARTICIPANTS)
    ) == (1, 1)
    # Delivered by push, not by polling
    assert coordinator.attachment.polling.active_kinds == []
    assert not coordinator.is_connection_degraded()

    await participant.detach_from_session()
    await coordinator.detach_from_session()


@pytest.mark.asyncio
async def test_coordinator_rescopes_progress_when_participants_join(store, scheduler, seed, make_live):
    _, tasks = await seed(tasks=2)
    coordinator = make_live(role=SyncRole.COORDINATOR)
    await coordinator.attach_to_session("ABC123")
    await scheduler.drain()

    views = []
    for name in ("Ada", "Grace"):
        live = make_live(identity_store=InMemoryIdentityStore())
        await live.attach_to_session("ABC123", participant_name=name)
        await scheduler.drain()
        views.append(live)

    progress_subs = store.active_subscriptions(ResourceKind.PROGRESS)
    coordinator_sub = [
        s for s in progress_subs if s.filter.conditions[0].op == "in"
    ]
    assert len(coordinator_sub) == 1
    assert set(coordinator_sub[0].filter.conditions[0].value) == {
        v.participant.id for v in views
    }
    assert coordinator.attachment.progress_ids == tuple(sorted(v.participant.id for v in views))

    await views[1].toggle_progress(tasks[0]["id"])
    await scheduler.drain()
    assert len(coordinator.get_snapshot(ResourceKind.PROGRESS)) == 1

    for live in views:
        await live.detach_from_session()
    await coordinator.detach_from_session()


@pytest.mark.asyncio
async def test_reload_restores_same_participant_and_progress(store, scheduler, seed, make_live):
    _, tasks = await seed()
    identity = InMemoryIdentityStore()

    first = make_live(identity_store=identity)
    await first.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()
    original_id = first.participant.id
    await first.toggle_progress(tasks[0]["id"])
    await first.toggle_progress(tasks[2]["id"])
    await first.detach_from_session()
    assert identity.get(participant_id_key("ABC123")) == original_id

    reloaded = make_live(identity_store=identity)
    await reloaded.attach_to_session("ABC123")
    await scheduler.drain()

    assert reloaded.participant.id == original_id
    assert reloaded.participant.is_online is True
    assert len(store.rows(ResourceKind.PARTICIPANTS)) == 1
    completed = {r["task_id"] for r in reloaded.get_snapshot(ResourceKind.PROGRESS) if r["completed"]}
    assert completed == {tasks[0]["id"], tasks[2]["id"]}
    await reloaded.detach_from_session()


@pytest.mark.asyncio
async def test_projection_converges_with_direct_fetch(store, scheduler, seed, make_live):
    session, tasks = await seed(tasks=3)
    live = make_live()
    await live.attach_to_session("ABC123", participant_name="Ada")
    await scheduler.drain()

    await store.insert(
        ResourceKind.TASKS, {"session_id": session["id"], "title": "Extra", "order_index": 3}
    )
    await store.update(ResourceKind.TASKS, tasks[0]["id"], {"title": "Renamed"})
    await store.delete(ResourceKind.TASKS, tasks[1]["id"])
    other = await store.insert(
        ResourceKind.PARTICIPANTS,
        {"session_id": session["id"], "name": "Grace", "is_online": True},
    )
    await store.update(ResourceKind.PARTICIPANTS, other["id"], {"is_online": False})
    await scheduler.drain()

    for kind in LIVE_KINDS:
        expected = await live.attachment.fetcher.load(kind)
        assert sorted(r["id"] for r in live.get_snapshot(kind)) == sorted(r["id"] for r in expected)
    titles = [t["title"] for t in live.get_snapshot(ResourceKind.TASKS)]
    assert titles == ["Renamed", "Task 3", "Extra"]
    assert live.participant_count() == 1
    await live.detach_from_session()


@pytest.mark.asyncio
async def test_stale_identity_creates_new_participant(store, scheduler, seed, make_live):
    await seed()
    identity = InMemoryIdentityStore(
        {"participant_id_ABC123": "gone", "participant_name_ABC123": "Ada"}
    )
    live = make_live(identity_store=identity)
    await live.attach_to_session("ABC123")
    await scheduler.drain()

    assert live.participant.id != "gone"
    assert live.participant.name == "Ada"
    assert identity.get("participant_id_ABC123") == live.participant.id
    row = await store.fetch_one(ResourceKind.PARTICIPANTS, Filter.eq("id", live.participant.id))
    assert row["is_online"] is True
    await live.detach_from_session()

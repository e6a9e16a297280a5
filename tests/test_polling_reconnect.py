"""Tests for fallback polling and the reconnection supervisor."""

import pytest

from livesync.core.timers import ManualScheduler
from livesync.realtime import (
    AttachmentRegistry,
    GroupState,
    PollingFallbackController,
    ReconnectionSupervisor,
    backoff_delay_ms,
)
from livesync.schemas import ResourceKind


def test_backoff_delays_double_and_cap():
    assert [backoff_delay_ms(n) for n in range(7)] == [
        1000,
        2000,
        4000,
        8000,
        16000,
        30000,
        30000,
    ]


@pytest.mark.asyncio
async def test_activation_is_idempotent_per_kind():
    scheduler = ManualScheduler()
    registry = AttachmentRegistry(scheduler, generation=1)
    ticks = []

    async def refresh(kind, trigger):
        ticks.append((kind, trigger, scheduler.now()))
        return True

    polling = PollingFallbackController(
        registry, refresh, {ResourceKind.PARTICIPANTS: 10000}
    )
    assert polling.activate(ResourceKind.PROGRESS) is True
    assert polling.activate(ResourceKind.PROGRESS) is False
    assert polling.activate_all([ResourceKind.PROGRESS, ResourceKind.PARTICIPANTS]) == 1
    assert scheduler.active_timers == 2

    await scheduler.advance(10.0)
    progress_ticks = [t for t in ticks if t[0] == ResourceKind.PROGRESS]
    participant_ticks = [t for t in ticks if t[0] == ResourceKind.PARTICIPANTS]
    assert [t[2] for t in progress_ticks] == [5.0, 10.0]
    assert [t[2] for t in participant_ticks] == [10.0]
    assert all(t[1] == "poll" for t in ticks)

    polling.deactivate_all()
    assert polling.active_kinds == []
    assert scheduler.active_timers == 0


@pytest.mark.asyncio
async def test_supervisor_backs_off_until_exhausted():
    scheduler = ManualScheduler()
    registry = AttachmentRegistry(scheduler, generation=1)
    retries = []

    async def resubscribe(kind):
        retries.append(scheduler.now())
        # Every retry fails again
        supervisor.on_degraded(kind)

    supervisor = ReconnectionSupervisor(registry, resubscribe)
    supervisor.on_degraded(ResourceKind.PROGRESS)
    await scheduler.advance(120.0)

    assert scheduler.scheduled_delays == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert retries == [1.0, 3.0, 7.0, 15.0, 31.0]
    assert supervisor.state(ResourceKind.PROGRESS) == GroupState.EXHAUSTED
    assert supervisor.is_degraded()
    assert registry.timer_count == 0


@pytest.mark.asyncio
async def test_success_resets_counter_and_cancels_pending_timer():
    scheduler = ManualScheduler()
    registry = AttachmentRegistry(scheduler, generation=1)
    retries = []

    async def resubscribe(kind):
        retries.append(kind)

    supervisor = ReconnectionSupervisor(registry, resubscribe)
    supervisor.on_degraded(ResourceKind.TASKS)
    supervisor.on_degraded(ResourceKind.TASKS)
    assert registry.timer_count == 1

    assert supervisor.on_subscribed(ResourceKind.TASKS) is True
    assert supervisor.attempts(ResourceKind.TASKS) == 0
    assert not supervisor.is_degraded()
    await scheduler.advance(5.0)
    assert retries == []


@pytest.mark.asyncio
async def test_rearm_resets_exhausted_group():
    scheduler = ManualScheduler()
    registry = AttachmentRegistry(scheduler, generation=1)

    async def resubscribe(kind):
        supervisor.on_degraded(kind)

    supervisor = ReconnectionSupervisor(registry, resubscribe, max_attempts=2)
    supervisor.on_degraded(ResourceKind.PROGRESS)
    await scheduler.advance(10.0)
    assert supervisor.exhausted_kinds() == [ResourceKind.PROGRESS]

    supervisor.rearm(ResourceKind.PROGRESS)
    assert supervisor.attempts(ResourceKind.PROGRESS) == 0
    assert supervisor.state(ResourceKind.PROGRESS) == GroupState.RETRYING
    supervisor.on_degraded(ResourceKind.PROGRESS)
    assert scheduler.scheduled_delays[-1] == 1.0

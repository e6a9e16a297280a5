"""Pytest configuration and shared fixtures for livesync tests

Provides:
- config: Settings isolated from the environment and any .env file
- store: InMemoryStore with fault injection
- scheduler: ManualScheduler (virtual time)
- identity: in-memory identity storage
- seed: factory creating a session with tasks
- make_live: factory creating LiveSession instances wired to the fixtures
"""

import os

os.environ.setdefault("LIVESYNC_METRICS_ENABLED", "false")

import pytest  # noqa: E402

from livesync.core.settings import Settings  # noqa: E402
from livesync.core.timers import ManualScheduler  # noqa: E402
from livesync.infra.identity import InMemoryIdentityStore  # noqa: E402
from livesync.infra.store import InMemoryStore  # noqa: E402
from livesync.realtime import LiveSession, SyncRole  # noqa: E402
from livesync.schemas import ResourceKind  # noqa: E402


@pytest.fixture
def config():
    return Settings(_env_file=None, METRICS_ENABLED=False)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def identity():
    return InMemoryIdentityStore()


@pytest.fixture
def seed(store):
    """Create a session with ``tasks`` tasks; returns (session_row, task_rows)."""

    async def _seed(code="ABC123", title="Workshop", tasks=3):
        session = await store.insert(
            ResourceKind.SESSIONS, {"code": code, "title": title, "active": True}
        )
        rows = []
        for index in range(tasks):
            rows.append(
                await store.insert(
                    ResourceKind.TASKS,
                    {
                        "session_id": session["id"],
                        "title": f"Task {index + 1}",
                        "order_index": index,
                    },
                )
            )
        return session, rows

    return _seed


@pytest.fixture
def make_live(store, scheduler, identity, config):
    """Build a LiveSession sharing the test store, scheduler and settings."""

    def _make(role=SyncRole.PARTICIPANT, identity_store=None, settings=None):
        return LiveSession(
            store,
            identity_store if identity_store is not None else identity,
            role=role,
            config=settings or config,
            scheduler=scheduler,
        )

    return _make

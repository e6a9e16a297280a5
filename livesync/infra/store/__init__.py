"""Remote data store implementations and factory."""

from __future__ import annotations

from typing import Optional

from livesync.core.settings import Settings, settings as default_settings
from livesync.infra.store.base import (
    ChangeEvent,
    ChannelStatus,
    RemoteStore,
    Row,
    Subscription,
    table_name,
)
from livesync.infra.store.filters import ALL, Condition, Filter
from livesync.infra.store.memory import InMemoryStore


def create_store(config: Optional[Settings] = None) -> RemoteStore:
    """Supabase store when a URL and key are configured, in-memory otherwise."""
    config = config or default_settings
    if config.STORE_URL and config.STORE_KEY:
        from livesync.infra.store.supabase import SupabaseStore

        return SupabaseStore(config.STORE_URL, config.STORE_KEY, config=config)
    return InMemoryStore()


__all__ = [
    "ALL",
    "ChangeEvent",
    "ChannelStatus",
    "Condition",
    "Filter",
    "InMemoryStore",
    "RemoteStore",
    "Row",
    "Subscription",
    "create_store",
    "table_name",
]

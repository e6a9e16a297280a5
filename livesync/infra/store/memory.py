"""In-memory store implementation for development and testing."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from livesync.core.errors import (
    DuplicateChannelError,
    RowNotFoundError,
    StoreRequestError,
    TransientNetworkError,
)
from livesync.infra.store.base import (
    ChangeCallback,
    ChangeEvent,
    ChannelStatus,
    Kind,
    RemoteStore,
    Row,
    StatusCallback,
    Subscription,
    table_name,
)
from livesync.infra.store.filters import Filter
from livesync.schemas import ResourceKind, utcnow

logger = logging.getLogger(__name__)

# Generated timestamp columns per table
_TIMESTAMP_DEFAULTS: Dict[str, Tuple[str, ...]] = {
    "sessions": ("created_at",),
    "tasks": ("created_at",),
    "participants": ("created_at", "last_seen"),
    "progress": ("updated_at",),
}

_ROW_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "sessions": {"active": True},
    "participants": {"is_online": False},
    "progress": {"completed": False},
}


class InMemoryStore(RemoteStore):
    """
    Per-process store: good for dev, demos and unit tests.

    Mirrors the behaviour of the hosted store closely enough for the sync
    layer: generated ids and timestamps, unique session codes, cascading
    deletes, and change notifications delivered on the next loop iteration.
    Fault injection hooks let tests degrade channels and fail operations.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Row]] = {k.value: {} for k in ResourceKind}
        self._subs: Dict[str, Subscription] = {}
        self._push_disabled: Set[str] = set()
        self._subscribe_failures: Dict[str, ChannelStatus] = {}
        self._failing_ops: Set[Tuple[str, str]] = set()
        self._closed = False
        self.calls: Counter = Counter()

    # ---- Fault injection ----

    def fail_subscriptions(
        self, kind: Kind, status: ChannelStatus = ChannelStatus.CHANNEL_ERROR
    ) -> None:
        """Answer future subscriptions for ``kind`` with ``status``."""
        self._subscribe_failures[table_name(kind)] = status

    def restore_subscriptions(self, kind: Kind) -> None:
        self._subscribe_failures.pop(table_name(kind), None)

    def break_channels(
        self, kind: Kind, status: ChannelStatus = ChannelStatus.CHANNEL_ERROR
    ) -> int:
        """Report ``status`` on every live subscription of ``kind``; returns count."""
        broken = 0
        for sub in self.active_subscriptions(kind):
            sub.active = False
            self._later(sub.on_status, status, f"injected {status.value}")
            broken += 1
        return broken

    def set_push_enabled(self, kind: Kind, enabled: bool) -> None:
        """Silently drop change notifications for ``kind`` while disabled."""
        if enabled:
            self._push_disabled.discard(table_name(kind))
        else:
            self._push_disabled.add(table_name(kind))

    def fail_operation(self, operation: str, kind: Kind) -> None:
        self._failing_ops.add((operation, table_name(kind)))

    def heal_operation(self, operation: str, kind: Kind) -> None:
        self._failing_ops.discard((operation, table_name(kind)))

    def active_subscriptions(self, kind: Optional[Kind] = None) -> List[Subscription]:
        subs = [s for s in self._subs.values() if s.active]
        if kind is not None:
            subs = [s for s in subs if s.kind == table_name(kind)]
        return subs

    def rows(self, kind: Kind) -> List[Row]:
        """Direct view of a table, bypassing fault injection."""
        return [dict(r) for r in self._tables[table_name(kind)].values()]

    # ---- Internals ----

    def _check(self, operation: str, table: str) -> None:
        self.calls[(operation, table)] += 1
        if self._closed:
            raise TransientNetworkError(operation, table, detail="store closed")
        if (operation, table) in self._failing_ops:
            raise TransientNetworkError(operation, table, detail="injected failure")

    def _later(self, fn: Callable[..., Any], *args: Any) -> None:
        asyncio.get_running_loop().call_soon(fn, *args)

    def _deliver_change(self, sub: Subscription, event: ChangeEvent) -> None:
        if sub.active:
            sub.on_change(event)

    def _deliver_status(
        self, sub: Subscription, status: ChannelStatus, reason: Optional[str]
    ) -> None:
        if not sub.active:
            return
        if status in (ChannelStatus.TIMED_OUT, ChannelStatus.CHANNEL_ERROR):
            sub.active = False
        sub.on_status(status, reason)

    def _notify(self, table: str, event_type: str, *rows: Row) -> None:
        if table in self._push_disabled:
            return
        event = ChangeEvent(kind=table, event_type=event_type)
        for sub in self.active_subscriptions(table):
            if any(sub.filter.matches(r) for r in rows):
                self._later(self._deliver_change, sub, event)

    @staticmethod
    def _sort(rows: List[Row], order_by: Optional[str]) -> List[Row]:
        if not order_by:
            return rows
        column = order_by.lstrip("-")
        return sorted(
            rows,
            key=lambda r: (r.get(column) is None, r.get(column)),
            reverse=order_by.startswith("-"),
        )

    # ---- CRUD ----

    async def fetch(
        self,
        kind: Kind,
        filter: Optional[Filter] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        table = table_name(kind)
        self._check("fetch", table)
        await asyncio.sleep(0)
        rows = [
            dict(r)
            for r in self._tables[table].values()
            if filter is None or filter.matches(r)
        ]
        return self._sort(rows, order_by)

    async def insert(self, kind: Kind, row: Row) -> Row:
        table = table_name(kind)
        self._check("insert", table)
        await asyncio.sleep(0)
        stored: Row = dict(_ROW_DEFAULTS.get(table, {}))
        stored.update(row)
        stored.setdefault("id", str(uuid.uuid4()))
        now = utcnow().isoformat()
        for column in _TIMESTAMP_DEFAULTS.get(table, ()):
            stored.setdefault(column, now)
        if table == "sessions" and any(
            s.get("code") == stored.get("code") for s in self._tables[table].values()
        ):
            raise StoreRequestError(
                "insert",
                table,
                409,
                'duplicate key value violates unique constraint "sessions_code_key"',
            )
        self._tables[table][stored["id"]] = stored
        self._notify(table, "INSERT", stored)
        return dict(stored)

    async def update(self, kind: Kind, row_id: str, patch: Row) -> Row:
        table = table_name(kind)
        self._check("update", table)
        await asyncio.sleep(0)
        current = self._tables[table].get(row_id)
        if current is None:
            raise RowNotFoundError(table, row_id)
        before = dict(current)
        current.update({k: v for k, v in patch.items() if k != "id"})
        self._notify(table, "UPDATE", before, current)
        return dict(current)

    async def delete(self, kind: Kind, row_id: str) -> None:
        table = table_name(kind)
        self._check("delete", table)
        await asyncio.sleep(0)
        self._delete_cascade(table, row_id)

    def _delete_cascade(self, table: str, row_id: str) -> None:
        row = self._tables[table].pop(row_id, None)
        if row is None:
            return
        if table == "sessions":
            for child in ("tasks", "participants"):
                for child_id in [
                    r["id"] for r in self._tables[child].values() if r.get("session_id") == row_id
                ]:
                    self._delete_cascade(child, child_id)
        elif table == "tasks":
            self._delete_progress_where("task_id", row_id)
        elif table == "participants":
            self._delete_progress_where("participant_id", row_id)
        self._notify(table, "DELETE", row)

    def _delete_progress_where(self, column: str, value: str) -> None:
        for pid in [r["id"] for r in self._tables["progress"].values() if r.get(column) == value]:
            self._delete_cascade("progress", pid)

    # ---- Push ----

    async def subscribe(
        self,
        kind: Kind,
        filter: Filter,
        name: str,
        on_status: StatusCallback,
        on_change: ChangeCallback,
    ) -> Subscription:
        table = table_name(kind)
        self.calls[("subscribe", table)] += 1
        existing = self._subs.get(name)
        if existing is not None and existing.active:
            raise DuplicateChannelError(table, name)
        sub = Subscription(
            name=name, kind=table, filter=filter, on_status=on_status, on_change=on_change
        )
        self._subs[name] = sub
        self._later(self._deliver_status, sub, ChannelStatus.CONNECTING, None)
        if self._closed:
            outcome = ChannelStatus.CHANNEL_ERROR
        else:
            outcome = self._subscribe_failures.get(table, ChannelStatus.SUBSCRIBED)
        reason = None if outcome == ChannelStatus.SUBSCRIBED else f"injected {outcome.value}"
        self._later(self._deliver_status, sub, outcome, reason)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        self.calls[("unsubscribe", subscription.kind)] += 1
        subscription.active = False
        if self._subs.get(subscription.name) is subscription:
            del self._subs[subscription.name]

    async def close(self) -> None:
        self._closed = True
        for sub in list(self._subs.values()):
            sub.active = False
        self._subs.clear()

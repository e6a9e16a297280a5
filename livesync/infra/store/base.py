"""Abstract base class for remote data store implementations."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from livesync.infra.store.filters import Filter
from livesync.schemas import ResourceKind

Row = Dict[str, Any]
Kind = Union[ResourceKind, str]


def table_name(kind: Kind) -> str:
    return kind.value if isinstance(kind, ResourceKind) else str(kind)


class ChannelStatus(str, Enum):
    """Status values a store reports for a push subscription."""

    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeEvent:
    """A change notification. Only the kind is trusted; payloads are not."""

    kind: str
    event_type: str  # INSERT | UPDATE | DELETE


StatusCallback = Callable[[ChannelStatus, Optional[str]], None]
ChangeCallback = Callable[[ChangeEvent], None]


@dataclass
class Subscription:
    """Store-side record of one push subscription."""

    name: str
    kind: str
    filter: Filter
    on_status: StatusCallback
    on_change: ChangeCallback
    active: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)


class RemoteStore(abc.ABC):
    """
    Opaque remote data store: pull reads, CRUD, and best-effort push
    subscriptions per table.

    Status and change callbacks are invoked on the event loop thread.
    """

    @abc.abstractmethod
    async def fetch(
        self,
        kind: Kind,
        filter: Optional[Filter] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        """
        Return all rows of ``kind`` matching ``filter``.

        ``order_by`` is a column name, prefixed with ``-`` for descending.
        """
        ...

    @abc.abstractmethod
    async def insert(self, kind: Kind, row: Row) -> Row:
        """Insert a row and return it as stored (with generated fields)."""
        ...

    @abc.abstractmethod
    async def update(self, kind: Kind, row_id: str, patch: Row) -> Row:
        """Apply ``patch`` to the row with ``row_id`` and return the result."""
        ...

    @abc.abstractmethod
    async def delete(self, kind: Kind, row_id: str) -> None:
        """Delete the row with ``row_id``."""
        ...

    @abc.abstractmethod
    async def subscribe(
        self,
        kind: Kind,
        filter: Filter,
        name: str,
        on_status: StatusCallback,
        on_change: ChangeCallback,
    ) -> Subscription:
        """
        Request a push subscription named ``name``.

        Returns immediately; acknowledgement or failure is reported through
        ``on_status``.
        """
        ...

    @abc.abstractmethod
    async def unsubscribe(self, subscription: Subscription) -> None:
        """Release a subscription. No callbacks fire for it afterwards."""
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        """Close the store and cleanup resources."""
        ...

    async def fetch_one(self, kind: Kind, filter: Filter) -> Optional[Row]:
        rows = await self.fetch(kind, filter)
        return rows[0] if rows else None

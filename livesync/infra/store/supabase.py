"""
Supabase store implementation: PostgREST for reads/writes and the Realtime
websocket (Phoenix channel framing) for push subscriptions.

Realtime status mapping:
- ``phx_reply`` ok for the join              -> SUBSCRIBED
- ``phx_reply`` error, ``phx_error``, ``phx_close`` or socket loss
                                            -> CHANNEL_ERROR
- no join reply within SUBSCRIBE_TIMEOUT_MS  -> TIMED_OUT
"""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlencode

import httpx
import structlog
import websockets

from livesync.core.errors import (
    DuplicateChannelError,
    RowNotFoundError,
    StoreRequestError,
    TransientNetworkError,
)
from livesync.core.settings import Settings, settings as default_settings
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

logger = structlog.get_logger(__name__)

REALTIME_VSN = "1.0.0"
PHOENIX_TOPIC = "phoenix"


@dataclass
class _Channel:
    topic: str
    subscription: Subscription
    join_ref: str
    timeout: Optional[asyncio.TimerHandle] = None
    joined: bool = False


class SupabaseStore(RemoteStore):
    """Remote store backed by a Supabase project (PostgREST + Realtime)."""

    def __init__(
        self,
        url: str,
        key: str,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or default_settings
        self._url = url.rstrip("/")
        self._key = key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ws: Any = None
        self._ws_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._leave_tasks: Set[asyncio.Task] = set()
        self._pending_heartbeat: Optional[str] = None
        self._channels: Dict[str, _Channel] = {}
        self._refs = itertools.count(1)
        self._closed = False

    # ---- REST ----

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self._url}/rest/v1",
                timeout=self._config.STORE_REQUEST_TIMEOUT_SEC,
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    async def _request(
        self,
        operation: str,
        table: str,
        method: str,
        params: List[tuple],
        body: Optional[Row] = None,
    ) -> Any:
        """Send a PostgREST request, retrying transport failures with backoff."""
        if self._closed:
            raise TransientNetworkError(operation, table, detail="store closed")
        attempts = max(1, self._config.STORE_MAX_RETRIES)
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                response = await self._http().request(
                    method, f"/{table}", params=params, json=body
                )
            except httpx.TransportError as exc:
                last_error = exc
                logger.warning(
                    "supabase_store.request.retry",
                    operation=operation,
                    table=table,
                    attempt=attempt + 1,
                    error=str(exc),
                )
                if attempt + 1 < attempts:
                    await asyncio.sleep(2**attempt)
                continue
            if response.status_code >= 400:
                raise StoreRequestError(operation, table, response.status_code, response.text)
            if not response.content:
                return None
            return response.json()
        raise TransientNetworkError(operation, table, cause=last_error)

    async def fetch(
        self,
        kind: Kind,
        filter: Optional[Filter] = None,
        order_by: Optional[str] = None,
    ) -> List[Row]:
        table = table_name(kind)
        params: List[tuple] = [("select", "*")]
        if filter is not None:
            params.extend(filter.to_params())
        if order_by:
            direction = "desc" if order_by.startswith("-") else "asc"
            params.append(("order", f"{order_by.lstrip('-')}.{direction}"))
        data = await self._request("fetch", table, "GET", params)
        return list(data or [])

    async def insert(self, kind: Kind, row: Row) -> Row:
        table = table_name(kind)
        data = await self._request("insert", table, "POST", [], body=row)
        if not data:
            raise StoreRequestError("insert", table, 500, "empty representation")
        return data[0]

    async def update(self, kind: Kind, row_id: str, patch: Row) -> Row:
        table = table_name(kind)
        data = await self._request("update", table, "PATCH", [("id", f"eq.{row_id}")], body=patch)
        if not data:
            raise RowNotFoundError(table, row_id)
        return data[0]

    async def delete(self, kind: Kind, row_id: str) -> None:
        table = table_name(kind)
        await self._request("delete", table, "DELETE", [("id", f"eq.{row_id}")])

    # ---- Realtime socket ----

    def realtime_url(self) -> str:
        base = self._url.replace("https://", "wss://").replace("http://", "ws://")
        query = urlencode({"apikey": self._key, "vsn": REALTIME_VSN})
        return f"{base}/realtime/v1/websocket?{query}"

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def _send(self, topic: str, event: str, payload: Dict[str, Any], ref: str) -> None:
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        await self._ws.send(json.dumps(message))

    async def _ensure_socket(self) -> None:
        async with self._ws_lock:
            if self._ws is not None:
                return
            self._ws = await websockets.connect(self.realtime_url())
            self._pending_heartbeat = None
            self._reader_task = asyncio.create_task(self._read_loop(self._ws))
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(self._ws))
            logger.info("supabase_store.socket.connected", url=self._url)

    async def _read_loop(self, ws: Any) -> None:
        reason = "socket closed"
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError):
                    logger.warning("supabase_store.socket.bad_frame")
                    continue
                self._dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = f"socket error: {exc}"
        if self._ws is ws:
            await self._drop_socket(reason)

    async def _heartbeat_loop(self, ws: Any) -> None:
        interval = self._config.SOCKET_HEARTBEAT_MS / 1000
        while self._ws is ws:
            await asyncio.sleep(interval)
            if self._ws is not ws:
                return
            if self._pending_heartbeat is not None:
                # Previous heartbeat never answered
                await self._drop_socket("heartbeat timeout", from_heartbeat=True)
                return
            ref = self._next_ref()
            self._pending_heartbeat = ref
            try:
                await self._send(PHOENIX_TOPIC, "heartbeat", {}, ref)
            except Exception as exc:
                await self._drop_socket(f"heartbeat send failed: {exc}", from_heartbeat=True)
                return

    async def _drop_socket(self, reason: str, from_heartbeat: bool = False) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        logger.warning("supabase_store.socket.lost", reason=reason, channels=len(self._channels))
        if not from_heartbeat and self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
        current = asyncio.current_task()
        if self._reader_task is not None and self._reader_task is not current:
            self._reader_task.cancel()
        try:
            await ws.close()
        except Exception as exc:
            logger.debug("supabase_store.socket.close_failed", error=str(exc))
        for channel in list(self._channels.values()):
            self._fail(channel, ChannelStatus.CHANNEL_ERROR, reason)

    # ---- Realtime dispatch ----

    def _dispatch(self, message: Dict[str, Any]) -> None:
        topic = message.get("topic")
        event = message.get("event")
        payload = message.get("payload") or {}
        ref = message.get("ref")

        if topic == PHOENIX_TOPIC:
            if event == "phx_reply" and ref == self._pending_heartbeat:
                self._pending_heartbeat = None
            return

        channel = self._channels.get(topic)
        if channel is None:
            return

        if event == "phx_reply" and ref == channel.join_ref:
            if payload.get("status") == "ok":
                self._joined(channel)
            else:
                response = payload.get("response") or {}
                self._fail(
                    channel,
                    ChannelStatus.CHANNEL_ERROR,
                    str(response.get("reason") or payload.get("status")),
                )
        elif event == "system" and payload.get("status") == "error":
            self._fail(channel, ChannelStatus.CHANNEL_ERROR, str(payload.get("message")))
        elif event in ("phx_error", "phx_close"):
            self._fail(channel, ChannelStatus.CHANNEL_ERROR, event)
        elif event == "postgres_changes":
            data = payload.get("data") or {}
            self._emit_change(
                channel,
                ChangeEvent(
                    kind=channel.subscription.kind,
                    event_type=str(data.get("type") or "UNKNOWN"),
                ),
            )

    def _emit_status(self, sub: Subscription, status: ChannelStatus, reason: Optional[str]) -> None:
        try:
            sub.on_status(status, reason)
        except Exception as exc:
            logger.error("supabase_store.status_callback_failed", channel=sub.name, error=str(exc))

    def _emit_change(self, channel: _Channel, event: ChangeEvent) -> None:
        sub = channel.subscription
        if not sub.active:
            return
        try:
            sub.on_change(event)
        except Exception as exc:
            logger.error("supabase_store.change_callback_failed", channel=sub.name, error=str(exc))

    def _joined(self, channel: _Channel) -> None:
        if channel.timeout is not None:
            channel.timeout.cancel()
            channel.timeout = None
        if channel.joined or not channel.subscription.active:
            return
        channel.joined = True
        self._emit_status(channel.subscription, ChannelStatus.SUBSCRIBED, None)

    def _fail(self, channel: _Channel, status: ChannelStatus, reason: Optional[str]) -> None:
        if channel.timeout is not None:
            channel.timeout.cancel()
            channel.timeout = None
        self._channels.pop(channel.topic, None)
        sub = channel.subscription
        if not sub.active:
            return
        sub.active = False
        self._emit_status(sub, status, reason)

    def _join_timed_out(self, channel: _Channel) -> None:
        channel.timeout = None
        if channel.joined:
            return
        self._fail(channel, ChannelStatus.TIMED_OUT, "join timed out")
        if self._ws is not None:
            task = asyncio.get_running_loop().create_task(self._leave_quietly(channel.topic))
            self._leave_tasks.add(task)
            task.add_done_callback(self._leave_tasks.discard)

    async def _leave_quietly(self, topic: str) -> None:
        try:
            await self._send(topic, "phx_leave", {}, self._next_ref())
        except Exception as exc:
            logger.debug("supabase_store.leave_failed", topic=topic, error=str(exc))

    # ---- Subscribe / unsubscribe ----

    async def subscribe(
        self,
        kind: Kind,
        filter: Filter,
        name: str,
        on_status: StatusCallback,
        on_change: ChangeCallback,
    ) -> Subscription:
        table = table_name(kind)
        topic = f"realtime:{name}"
        if topic in self._channels:
            raise DuplicateChannelError(table, name)

        sub = Subscription(
            name=name, kind=table, filter=filter, on_status=on_status, on_change=on_change
        )
        channel = _Channel(topic=topic, subscription=sub, join_ref=self._next_ref())
        sub.extra["topic"] = topic
        self._emit_status(sub, ChannelStatus.CONNECTING, None)

        try:
            await self._ensure_socket()
        except Exception as exc:
            logger.warning("supabase_store.socket.connect_failed", error=str(exc))
            sub.active = False
            asyncio.get_running_loop().call_soon(
                self._emit_status, sub, ChannelStatus.CHANNEL_ERROR, f"connect failed: {exc}"
            )
            return sub

        change: Dict[str, Any] = {"event": "*", "schema": "public", "table": table}
        realtime_filter = filter.to_realtime()
        if realtime_filter:
            change["filter"] = realtime_filter
        payload = {
            "config": {
                "broadcast": {"self": False},
                "presence": {"key": ""},
                "postgres_changes": [change],
            },
            "access_token": self._key,
        }

        self._channels[topic] = channel
        channel.timeout = asyncio.get_running_loop().call_later(
            self._config.SUBSCRIBE_TIMEOUT_MS / 1000, self._join_timed_out, channel
        )
        try:
            await self._send(topic, "phx_join", payload, channel.join_ref)
        except Exception as exc:
            self._fail(channel, ChannelStatus.CHANNEL_ERROR, f"join send failed: {exc}")
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        subscription.active = False
        topic = subscription.extra.get("topic")
        channel = self._channels.get(topic) if topic else None
        if channel is None or channel.subscription is not subscription:
            return
        if channel.timeout is not None:
            channel.timeout.cancel()
        del self._channels[topic]
        if self._ws is not None:
            await self._leave_quietly(topic)

    async def close(self) -> None:
        self._closed = True
        for channel in list(self._channels.values()):
            channel.subscription.active = False
            if channel.timeout is not None:
                channel.timeout.cancel()
        self._channels.clear()
        ws, self._ws = self._ws, None
        for task in (self._heartbeat_task, self._reader_task, *self._leave_tasks):
            if task is not None:
                task.cancel()
        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.debug("supabase_store.socket.close_failed", error=str(exc))
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("supabase_store.closed")

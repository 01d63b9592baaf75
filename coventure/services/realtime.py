"""Transporte realtime del backend (protocolo de canales Phoenix sobre websocket).

Solo traduce frames a estados de canal y eventos de cambio; la política de
reconexión vive en el SubscriptionManager.
"""
import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Dict, Optional

import aiohttp

from coventure.core.config import Settings
from coventure.core.errors import TransientBackendError
from coventure.schemas.realtime import ChannelStatus, PushEvent, Scope

logger = logging.getLogger(__name__)

EventHandler = Callable[[PushEvent], None]
StateHandler = Callable[[ChannelStatus], None]

JOIN_TIMEOUT = 10.0


class RealtimeChannel:
    def __init__(self, socket: "RealtimeSocket", topic: str, scope: Scope,
                 on_event: EventHandler, on_state: StateHandler):
        self.socket = socket
        self.topic = topic
        self.scope = scope
        self.on_event = on_event
        self.on_state = on_state
        self.join_ref: Optional[str] = None
        self.status: Optional[ChannelStatus] = None
        self._join_timer: Optional[asyncio.TimerHandle] = None

    def join_payload(self, access_token: Optional[str]) -> Dict[str, Any]:
        change: Dict[str, Any] = {"event": self.scope.event, "schema": "public", "table": self.scope.table}
        if self.scope.filter:
            change["filter"] = self.scope.filter
        payload: Dict[str, Any] = {"config": {"postgres_changes": [change]}}
        if access_token:
            payload["access_token"] = access_token
        return payload

    async def join(self) -> None:
        self.join_ref = await self.socket.push(self.topic, "phx_join", self.join_payload(self.socket.access_token))
        loop = asyncio.get_running_loop()
        self._join_timer = loop.call_later(JOIN_TIMEOUT, self._join_timed_out)

    def _join_timed_out(self) -> None:
        if self.status is None:
            self.set_status(ChannelStatus.TIMED_OUT)

    def set_status(self, status: ChannelStatus) -> None:
        if self._join_timer is not None:
            self._join_timer.cancel()
            self._join_timer = None
        if status == self.status:
            return
        self.status = status
        self.on_state(status)

    def handle(self, event: str, payload: Dict[str, Any], ref: Optional[str]) -> None:
        if event == "phx_reply" and ref == self.join_ref:
            if payload.get("status") == "ok":
                self.set_status(ChannelStatus.SUBSCRIBED)
            else:
                logger.warning("Join rejected for %s: %s", self.topic, payload.get("response"))
                self.set_status(ChannelStatus.CHANNEL_ERROR)
        elif event == "postgres_changes":
            data = payload.get("data") or {}
            try:
                push = PushEvent.from_postgres_change(data)
            except (KeyError, ValueError) as exc:
                logger.warning("Malformed change on %s: %s", self.topic, exc)
                return
            self.on_event(push)
        elif event == "phx_error":
            self.set_status(ChannelStatus.CHANNEL_ERROR)
        elif event == "phx_close":
            self.set_status(ChannelStatus.CLOSED)
        elif event == "system" and payload.get("status") == "error":
            logger.warning("System error on %s: %s", self.topic, payload.get("message"))
            self.set_status(ChannelStatus.CHANNEL_ERROR)

    async def close(self) -> None:
        if self._join_timer is not None:
            self._join_timer.cancel()
            self._join_timer = None
        self.status = ChannelStatus.CLOSED
        await self.socket.leave(self)


class RealtimeSocket:
    """Una conexión websocket compartida por todos los canales de un usuario."""

    def __init__(self, settings: Settings, access_token: Optional[str] = None,
                 http: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.access_token = access_token
        self._http = http
        self._owns_http = http is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._channels: Dict[str, RealtimeChannel] = {}
        self._refs = itertools.count(1)
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        async with self._connect_lock:
            if self.connected:
                return
            if self._http is None:
                self._http = aiohttp.ClientSession()
            try:
                self._ws = await asyncio.wait_for(
                    self._http.ws_connect(self.settings.realtime_url),
                    timeout=self.settings.http_timeout,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.error("Realtime connection failed: %s", exc)
                raise TransientBackendError(f"Realtime connection failed: {exc}") from exc
            logger.info("Realtime socket connected")
            self._reader = asyncio.create_task(self._read_loop())
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def push(self, topic: str, event: str, payload: Dict[str, Any]) -> str:
        if not self.connected:
            raise TransientBackendError("Realtime socket is not connected")
        ref = str(next(self._refs))
        message = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        try:
            await self._ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise TransientBackendError(f"Realtime send failed: {exc}") from exc
        return ref

    async def open_channel(self, scope: Scope, on_event: EventHandler, on_state: StateHandler) -> RealtimeChannel:
        await self.connect()
        topic = f"realtime:{scope.key}:{next(self._refs)}"
        channel = RealtimeChannel(self, topic, scope, on_event, on_state)
        self._channels[topic] = channel
        try:
            await channel.join()
        except TransientBackendError:
            self._channels.pop(topic, None)
            raise
        return channel

    async def leave(self, channel: RealtimeChannel) -> None:
        if self._channels.pop(channel.topic, None) is None:
            return
        if self.connected:
            try:
                await self.push(channel.topic, "phx_leave", {})
            except TransientBackendError:
                logger.debug("Could not send leave for %s", channel.topic)

    async def set_access_token(self, token: str) -> None:
        self.access_token = token
        for channel in list(self._channels.values()):
            if self.connected:
                await self.push(channel.topic, "access_token", {"access_token": token})

    async def _read_loop(self) -> None:
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        logger.warning("Realtime socket error: %s", ws.exception())
                    continue
                try:
                    frame = json.loads(msg.data)
                except ValueError:
                    logger.warning("Discarding non-JSON realtime frame")
                    continue
                channel = self._channels.get(frame.get("topic"))
                if channel is not None:
                    channel.handle(frame.get("event"), frame.get("payload") or {}, frame.get("ref"))
        finally:
            logger.warning("Realtime socket closed")
            self._ws = None
            if self._heartbeat is not None:
                self._heartbeat.cancel()
            # cada canal vivo informa CLOSED; el manager decide si reintenta
            for channel in list(self._channels.values()):
                self._channels.pop(channel.topic, None)
                channel.set_status(ChannelStatus.CLOSED)

    async def _heartbeat_loop(self) -> None:
        while self.connected:
            await asyncio.sleep(self.settings.realtime_heartbeat_interval)
            try:
                await self.push("phoenix", "heartbeat", {})
            except TransientBackendError:
                logger.warning("Realtime heartbeat failed")
                if self._ws is not None:
                    await self._ws.close()
                return

    async def close(self) -> None:
        for channel in list(self._channels.values()):
            await channel.close()
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

"""Ciclo de vida de las suscripciones realtime.

Un canal vivo por scope. Ante CLOSED / CHANNEL_ERROR / TIMED_OUT se reintenta
con backoff exponencial acotado; agotados los reintentos el handle queda en
estado degradado y se avisa a la vista. Nunca se reintenta en silencio sin
límite.
"""
import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from coventure.core.errors import CoVentureError
from coventure.schemas.realtime import ChannelStatus, PushEvent, Scope, SubscriptionState, SubscriptionStatus

logger = logging.getLogger(__name__)

EventCallback = Callable[[PushEvent], None]
ResyncCallback = Callable[[], Awaitable[Any]]
StatusCallback = Callable[["SubscriptionHandle"], None]
Sleep = Callable[[float], Awaitable[Any]]

RETRYABLE = (ChannelStatus.CLOSED, ChannelStatus.CHANNEL_ERROR, ChannelStatus.TIMED_OUT)


class Channel(Protocol):
    async def close(self) -> None: ...


class ChannelOpener(Protocol):
    async def open_channel(self, scope: Scope, on_event: Callable[[PushEvent], None],
                           on_state: Callable[[ChannelStatus], None]) -> Channel: ...


def backoff_delay_ms(attempt: int, base_ms: int = 1000, max_ms: int = 10000) -> int:
    return min(base_ms * (2 ** attempt), max_ms)


class SubscriptionHandle:
    def __init__(self, scope: Scope):
        self.id = str(uuid.uuid4())
        self.scope = scope
        self.state = SubscriptionState.CONNECTING
        self.attempt = 0
        self.active = True
        self.listeners: List[EventCallback] = []
        self.resync_listeners: List[ResyncCallback] = []
        self._channel: Optional[Channel] = None
        self._generation = 0
        self._retry_task: Optional[asyncio.Task] = None
        self._opening: Optional[asyncio.Task] = None
        self._resync_task: Optional[asyncio.Task] = None
        self._resync_pending = False

    @property
    def degraded(self) -> bool:
        return self.state == SubscriptionState.DEGRADED

    def status(self) -> SubscriptionStatus:
        return SubscriptionStatus(scope=self.scope.key, state=self.state, attempt=self.attempt)

    def __repr__(self):
        return f"<SubscriptionHandle {self.scope.key} {self.state.value}>"


class SubscriptionManager:
    def __init__(
        self,
        backend: ChannelOpener,
        *,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10000,
        sleep: Sleep = asyncio.sleep,
        on_status: Optional[StatusCallback] = None,
    ):
        self._backend = backend
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep
        self._on_status = on_status
        self._handles: Dict[Scope, SubscriptionHandle] = {}

    @classmethod
    def from_settings(cls, backend: ChannelOpener, settings, **kwargs) -> "SubscriptionManager":
        return cls(
            backend,
            max_retries=settings.realtime_max_retries,
            base_delay_ms=settings.realtime_base_delay_ms,
            max_delay_ms=settings.realtime_max_delay_ms,
            **kwargs,
        )

    @property
    def handles(self) -> List[SubscriptionHandle]:
        return list(self._handles.values())

    def get(self, scope: Scope) -> Optional[SubscriptionHandle]:
        return self._handles.get(scope)

    def backoff_delay(self, attempt: int) -> int:
        return backoff_delay_ms(attempt, self.base_delay_ms, self.max_delay_ms)

    # ---------- API pública ----------

    async def subscribe(self, scope: Scope, on_event: EventCallback,
                        on_resync: Optional[ResyncCallback] = None) -> SubscriptionHandle:
        """Abre (o reutiliza) el canal del scope. Los errores de transporte no se propagan.

        ``on_resync`` se invoca cada vez que el canal vuelve a SUBSCRIBED tras un
        corte, para recargar lo que se escribió mientras no había canal.
        """
        handle = self._handles.get(scope)
        if handle is None or not handle.active:
            handle = SubscriptionHandle(scope)
            self._handles[scope] = handle
            self._add_listeners(handle, on_event, on_resync)
            await self._open(handle)
            return handle
        self._add_listeners(handle, on_event, on_resync)
        return handle

    @staticmethod
    def _add_listeners(handle: SubscriptionHandle, on_event: EventCallback,
                       on_resync: Optional[ResyncCallback]) -> None:
        if on_event not in handle.listeners:
            handle.listeners.append(on_event)
        if on_resync is not None and on_resync not in handle.resync_listeners:
            handle.resync_listeners.append(on_resync)

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        if not handle.active:
            return
        handle.active = False
        handle.listeners.clear()
        handle.resync_listeners.clear()
        if self._handles.get(handle.scope) is handle:
            del self._handles[handle.scope]
        tasks = [handle._retry_task, handle._resync_task]
        handle._retry_task = handle._resync_task = None
        for task in tasks:
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._close_channel(handle)
        self._set_state(handle, SubscriptionState.CLOSED)
        logger.info("Unsubscribed from %s", handle.scope.key)

    async def resubscribe(self, handle: SubscriptionHandle) -> SubscriptionHandle:
        """Reintento manual ("refrescar") desde el estado degradado."""
        if not handle.active:
            raise ValueError("Cannot resubscribe a closed subscription")
        if handle._retry_task is not None or handle._opening is not None:
            return handle
        handle.attempt = 0
        handle._resync_pending = True
        await self._close_channel(handle)
        await self._open(handle)
        return handle

    async def close_all(self) -> None:
        for handle in list(self._handles.values()):
            await self.unsubscribe(handle)

    async def settle(self) -> None:
        """Espera a que terminen los reintentos y recargas en curso."""
        current = asyncio.current_task()
        while True:
            tasks = [
                task
                for h in self._handles.values()
                for task in (h._retry_task, h._opening, h._resync_task)
                if task is not None and task is not current and not task.done()
            ]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---------- internos ----------

    async def _open(self, handle: SubscriptionHandle) -> None:
        handle._generation += 1
        generation = handle._generation
        handle._opening = asyncio.current_task()
        self._set_state(handle, SubscriptionState.CONNECTING)
        try:
            channel = await self._backend.open_channel(
                handle.scope,
                lambda event: self._dispatch(handle, event),
                lambda status: self._on_channel_state(handle, generation, status),
            )
        except (CoVentureError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Could not open channel for %s: %s", handle.scope.key, exc)
            self._on_channel_state(handle, generation, ChannelStatus.CHANNEL_ERROR)
            return
        finally:
            if handle._opening is asyncio.current_task():
                handle._opening = None
        if not handle.active or generation != handle._generation:
            # el handle se cerró o se reabrió mientras esperábamos el canal
            await channel.close()
            return
        handle._channel = channel

    async def _close_channel(self, handle: SubscriptionHandle) -> None:
        channel = handle._channel
        handle._channel = None
        handle._generation += 1
        if channel is not None:
            try:
                await channel.close()
            except (CoVentureError, OSError) as exc:
                logger.debug("Error closing channel for %s: %s", handle.scope.key, exc)

    def _dispatch(self, handle: SubscriptionHandle, event: PushEvent) -> None:
        if not handle.active:
            return
        if not handle.scope.matches(event.table, event.record):
            logger.debug("Dropping event outside scope %s", handle.scope.key)
            return
        for listener in list(handle.listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed for %s", handle.scope.key)

    def _on_channel_state(self, handle: SubscriptionHandle, generation: int, status: ChannelStatus) -> None:
        if not handle.active or generation != handle._generation:
            return
        if status == ChannelStatus.SUBSCRIBED:
            handle.attempt = 0
            self._set_state(handle, SubscriptionState.SUBSCRIBED)
            logger.info("Subscribed to %s", handle.scope.key)
            if handle._resync_pending:
                handle._resync_pending = False
                if handle.resync_listeners and handle._resync_task is None:
                    handle._resync_task = asyncio.get_running_loop().create_task(self._resync(handle))
            return
        if status not in RETRYABLE or handle._retry_task is not None:
            return
        logger.warning("Channel %s reported %s", handle.scope.key, status.value)
        handle._retry_task = asyncio.get_running_loop().create_task(self._retry(handle))

    async def _retry(self, handle: SubscriptionHandle) -> None:
        try:
            await self._close_channel(handle)
            if handle.attempt >= self.max_retries:
                logger.error("Giving up on %s after %d retries", handle.scope.key, handle.attempt)
                self._set_state(handle, SubscriptionState.DEGRADED)
                return
            delay = self.backoff_delay(handle.attempt)
            handle.attempt += 1
            self._set_state(handle, SubscriptionState.RETRYING)
            logger.info("Retrying %s in %d ms (attempt %d/%d)", handle.scope.key, delay, handle.attempt, self.max_retries)
            await self._sleep(delay / 1000)
            if not handle.active:
                return
            handle._resync_pending = True
        finally:
            if handle._retry_task is asyncio.current_task():
                handle._retry_task = None
        await self._open(handle)

    async def _resync(self, handle: SubscriptionHandle) -> None:
        """Recarga el scope después de una reconexión."""
        try:
            for callback in list(handle.resync_listeners):
                if not handle.active:
                    return
                try:
                    await callback()
                except CoVentureError as exc:
                    logger.warning("Resync of %s failed: %s", handle.scope.key, exc)
        finally:
            if handle._resync_task is asyncio.current_task():
                handle._resync_task = None
        logger.info("Resynced %s after reconnect", handle.scope.key)

    def _set_state(self, handle: SubscriptionHandle, state: SubscriptionState) -> None:
        if handle.state == state:
            return
        handle.state = state
        if self._on_status is not None:
            try:
                self._on_status(handle)
            except Exception:
                logger.exception("Status callback failed for %s", handle.scope.key)

"""Espacio de trabajo por usuario: cliente, store, suscripciones y superficies."""
import asyncio
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from coventure.core.config import Settings
from coventure.core.errors import BackendError
from coventure.schemas.auth import CurrentUser
from coventure.schemas.realtime import Notice, StoreChange, SubscriptionState
from coventure.services.applications import ApplicationService
from coventure.services.backend_client import BackendClient
from coventure.services.chat import ChatService
from coventure.services.profiles import ProfileService
from coventure.services.projects import ProjectService
from coventure.services.session import SessionState, SessionStore
from coventure.services.store import ReconcilingStore
from coventure.services.subscriptions import SubscriptionHandle, SubscriptionManager

logger = logging.getLogger(__name__)

DEGRADED_MESSAGE = "Live updates unavailable, refresh manually"


class Workspace:
    def __init__(self, settings: Settings, backend, session: SessionState,
                 store: Optional[ReconcilingStore] = None, sleep=asyncio.sleep):
        self.settings = settings
        self.backend = backend
        self.session = session
        self.store = store or ReconcilingStore(reconcile_window_seconds=settings.chat_reconcile_window_seconds)
        self.subscriptions = SubscriptionManager.from_settings(
            backend, settings, sleep=sleep, on_status=self._on_subscription_status,
        )
        self.notices: Deque[Notice] = deque(maxlen=50)
        self._feeds: List[asyncio.Queue] = []
        self.store.add_listener(self._on_store_change)

        self.chat = ChatService(self)
        self.applications = ApplicationService(self)
        self.projects = ProjectService(self)
        self.profiles = ProfileService(self)

    @property
    def user_id(self) -> str:
        return self.session.user_id

    # ---------- avisos y feed en vivo ----------

    def notify(self, level: str, message: str) -> Notice:
        notice = Notice(level=level, message=message)
        self.notices.append(notice)
        self._publish({"type": "notice", **notice.model_dump(mode="json")})
        return notice

    def report(self, message: str, exc: Exception) -> None:
        """Registra un fallo del backend y lo convierte en aviso visible."""
        logger.error("%s: %s", message, exc)
        self.notify("error", message)

    def open_live_feed(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._feeds.append(queue)
        return queue

    def close_live_feed(self, queue: asyncio.Queue) -> None:
        if queue in self._feeds:
            self._feeds.remove(queue)

    def _publish(self, payload: Dict[str, Any]) -> None:
        for queue in list(self._feeds):
            queue.put_nowait(payload)

    def _on_store_change(self, change: StoreChange) -> None:
        self._publish({"type": "change", **change.model_dump()})

    def _on_subscription_status(self, handle: SubscriptionHandle) -> None:
        self._publish({"type": "subscription", **handle.status().model_dump(mode="json")})
        if handle.state == SubscriptionState.DEGRADED:
            self.notify("warning", DEGRADED_MESSAGE)

    def status(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "subscriptions": [h.status().model_dump(mode="json") for h in self.subscriptions.handles],
            "degraded": any(h.degraded for h in self.subscriptions.handles),
            "notices": [n.model_dump(mode="json") for n in self.notices],
        }

    async def refresh_live_updates(self) -> None:
        for handle in self.subscriptions.handles:
            if handle.degraded:
                await self.subscriptions.resubscribe(handle)
        await self.subscriptions.settle()

    # ---------- sesión ----------

    async def ensure_fresh_session(self) -> None:
        if not self.session.needs_refresh():
            return
        try:
            auth = await self.backend.refresh(self.session.refresh_token)
        except BackendError as exc:
            logger.warning("Token refresh failed for %s: %s", self.user_id, exc)
            return
        self.session.update(auth)

    async def close(self) -> None:
        await self.subscriptions.close_all()
        await self.backend.close()

    async def teardown(self) -> None:
        """Cierre de sesión: primero las suscripciones, luego la sesión."""
        await self.subscriptions.close_all()
        self.chat.guard.end()
        self.applications.guard.end()
        self.projects.guard.end()
        try:
            await self.backend.sign_out()
        except BackendError as exc:
            logger.warning("Sign-out call failed for %s: %s", self.user_id, exc)
        self.session.teardown()
        self.store.clear()
        self.notices.clear()
        await self.backend.close()


class WorkspaceRegistry:
    def __init__(self, settings: Settings, session_store: Optional[SessionStore] = None,
                 backend_factory=BackendClient):
        self.settings = settings
        self.session_store = session_store
        self._backend_factory = backend_factory
        self._workspaces: Dict[str, Workspace] = {}

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._workspaces

    async def get(self, user: CurrentUser) -> Workspace:
        workspace = self._workspaces.get(user.user_id)
        if workspace is None:
            backend = self._backend_factory(self.settings, access_token=user.access_token)
            session = SessionState(user.user_id, user.access_token, store=self.session_store).init()
            workspace = Workspace(self.settings, backend, session)
            self._workspaces[user.user_id] = workspace
            logger.info("Workspace created for user %s", user.user_id)
        elif workspace.session.access_token != user.access_token:
            workspace.session.replace_access_token(user.access_token)
            await workspace.backend.set_access_token(user.access_token)
        await workspace.ensure_fresh_session()
        return workspace

    def add(self, workspace: Workspace) -> None:
        self._workspaces[workspace.user_id] = workspace

    async def remove(self, user_id: str) -> None:
        workspace = self._workspaces.pop(user_id, None)
        if workspace is not None:
            await workspace.teardown()

    async def close_all(self) -> None:
        for workspace in list(self._workspaces.values()):
            await workspace.close()
        self._workspaces.clear()

"""Salas de chat por postulación y mensajes con envío optimista."""
import logging
from typing import TYPE_CHECKING, List, Optional

from coventure.core.errors import BackendError, ClientValidationError, ConflictError, NotFoundError, PermissionDenied
from coventure.schemas.chat import ChatMessageRead, ChatRoomRead
from coventure.schemas.entity import utcnow
from coventure.schemas.realtime import PushEvent, Scope
from coventure.services.scope_guard import ScopeGuard
from coventure.utils.validators import require_text

if TYPE_CHECKING:
    from coventure.services.workspace import Workspace

logger = logging.getLogger(__name__)

ROOMS = "chat_rooms"
MESSAGES = "chat_messages"
APPLICATIONS = "project_applications"


class ChatService:
    def __init__(self, workspace: "Workspace"):
        self.ws = workspace
        self.guard = ScopeGuard()
        self._handle = None

    @property
    def current_room(self) -> Optional[str]:
        return self.guard.scope.value if self.guard.scope is not None else None

    async def get_or_create_room(self, project_id: str, application_id: str) -> ChatRoomRead:
        """Una sala por (proyecto, postulación); si otro cliente la crea a la vez se reutiliza."""
        backend = self.ws.backend
        key = {"project_id": project_id, "application_id": application_id}
        try:
            await self._check_participant(project_id, application_id)
            try:
                row = await backend.query_single(ROOMS, key)
            except NotFoundError:
                try:
                    row = await backend.insert(ROOMS, key)
                    logger.info("Created chat room for application %s", application_id)
                except ConflictError:
                    row = await backend.query_single(ROOMS, key)
        except BackendError as exc:
            self.ws.report("Failed to initialize chat", exc)
            raise
        return self.ws.store.ingest_snapshot(ROOMS, [row])[0]

    async def _check_participant(self, project_id: str, application_id: str) -> None:
        store = self.ws.store
        application = store.get(APPLICATIONS, application_id)
        if application is None:
            row = await self.ws.backend.query_single(APPLICATIONS, {"id": application_id})
            application = store.ingest_snapshot(APPLICATIONS, [row])[0]
        if application.project_id != project_id:
            raise ClientValidationError("Application does not belong to this project")
        project = await self.ws.projects.get_project(project_id)
        if self.ws.user_id not in (application.applicant_id, project.creator_id):
            raise PermissionDenied("Only the applicant and the project creator can use this chat")

    async def _check_room_access(self, room_id: str) -> None:
        """Sala -> postulación -> proyecto; solo entran el postulante y el creador."""
        room = self.ws.store.get(ROOMS, room_id)
        if room is None:
            row = await self.ws.backend.query_single(ROOMS, {"id": room_id})
            room = self.ws.store.ingest_snapshot(ROOMS, [row])[0]
        await self._check_participant(room.project_id, room.application_id)

    async def fetch_messages(self, room_id: str) -> List[ChatMessageRead]:
        """Lectura puntual sin suscripción."""
        try:
            await self._check_room_access(room_id)
            rows = await self.ws.backend.query(MESSAGES, {"room_id": room_id}, order="created_at.asc")
        except BackendError as exc:
            self.ws.report("Failed to load messages", exc)
            raise
        self.ws.store.ingest_snapshot(MESSAGES, rows)
        return self.messages(room_id)

    async def open_room(self, room_id: str) -> List[ChatMessageRead]:
        scope = Scope.for_table(MESSAGES, "room_id", room_id)
        if self.guard.scope == scope:
            return self.messages(room_id)
        try:
            await self._check_room_access(room_id)
        except BackendError as exc:
            self.ws.report("Failed to load messages", exc)
            raise
        await self.close_room()

        token = self.guard.begin(scope)
        self._handle = await self.ws.subscriptions.subscribe(scope, self._on_event, self._resync)
        return await self._load(room_id, token)

    async def _load(self, room_id: str, token: int) -> List[ChatMessageRead]:
        try:
            rows = await self.ws.backend.query(MESSAGES, {"room_id": room_id}, order="created_at.asc")
        except BackendError as exc:
            if self.guard.is_current(token):
                self.ws.report("Failed to load messages", exc)
            raise
        if not self.guard.is_current(token):
            logger.debug("Discarding stale message fetch for room %s", room_id)
            return []
        self.ws.store.ingest_snapshot(MESSAGES, rows)
        return self.messages(room_id)

    async def _resync(self) -> None:
        room_id = self.current_room
        if room_id is not None:
            await self._load(room_id, self.guard.token)

    async def close_room(self) -> None:
        self.guard.end()
        handle, self._handle = self._handle, None
        if handle is not None:
            await self.ws.subscriptions.unsubscribe(handle)

    def _on_event(self, event: PushEvent) -> None:
        self.ws.store.ingest_push_event(event)

    def messages(self, room_id: str) -> List[ChatMessageRead]:
        store = self.ws.store
        result = []
        for message in store.list(MESSAGES, lambda m: m.room_id == room_id):
            if store.is_pending(message.id) and not message.pending:
                message = message.model_copy(update={"pending": True})
            result.append(message)
        return result

    async def send_message(self, room_id: str, content: str) -> ChatMessageRead:
        content = require_text(content, "Message")
        try:
            await self._check_room_access(room_id)
        except BackendError as exc:
            self.ws.report("Failed to send message", exc)
            raise
        store = self.ws.store
        placeholder = ChatMessageRead(
            id="pending", room_id=room_id, sender_id=self.ws.user_id,
            content=content, created_at=utcnow(), pending=True,
        )
        token = store.apply_optimistic(MESSAGES, placeholder)
        try:
            row = await self.ws.backend.insert(
                MESSAGES, {"room_id": room_id, "sender_id": self.ws.user_id, "content": content},
            )
        except (BackendError, ConflictError) as exc:
            store.rollback_optimistic(token)
            self.ws.report("Failed to send message", exc)
            raise
        return store.confirm_optimistic(MESSAGES, token, row)

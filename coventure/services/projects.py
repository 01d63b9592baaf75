"""Feed de proyectos, creación, estado y miembros."""
import logging
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from coventure.core.errors import (
    BackendError,
    ClientValidationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
)
from coventure.schemas.entity import utcnow
from coventure.schemas.project import ProjectCreate, ProjectMemberRead, ProjectRead
from coventure.schemas.realtime import PushEvent, Scope
from coventure.services.scope_guard import ScopeGuard
from coventure.utils.validators import clean_tags, require_text

if TYPE_CHECKING:
    from coventure.services.workspace import Workspace

logger = logging.getLogger(__name__)

PROJECTS = "projects"
MEMBERS = "project_members"
APPLICATIONS = "project_applications"

STATUS_ORDER = {"open": 0, "in_progress": 1, "completed": 2}


class ProjectStatusPolicy(str, Enum):
    MANUAL = "manual"
    AUTO_AT_CAPACITY = "auto_at_capacity"


def validate_project(data: ProjectCreate) -> ProjectCreate:
    skills = clean_tags(data.required_skills)
    if not skills:
        raise ClientValidationError("At least one required skill is needed")
    if data.team_size < 1:
        raise ClientValidationError("Team size must be at least 1")
    return ProjectCreate(
        title=require_text(data.title, "Title"),
        description=require_text(data.description, "Description"),
        required_skills=skills,
        team_size=data.team_size,
        timeline=require_text(data.timeline, "Timeline"),
    )


class ProjectService:
    def __init__(self, workspace: "Workspace"):
        self.ws = workspace
        self.guard = ScopeGuard()
        self._handle = None

    @property
    def policy(self) -> ProjectStatusPolicy:
        return ProjectStatusPolicy(self.ws.settings.project_status_policy)

    # ---------- feed ----------

    async def open_feed(self) -> List[ProjectRead]:
        scope = Scope.for_table(PROJECTS)
        token = self.guard.begin(scope)
        self._handle = await self.ws.subscriptions.subscribe(scope, self._on_event, self._resync)
        return await self._load_feed(token)

    async def _load_feed(self, token: int) -> List[ProjectRead]:
        uid = self.ws.user_id
        try:
            projects = await self.ws.backend.query(
                PROJECTS, {"status": "open", "creator_id": ("neq", uid)}, order="created_at.desc",
            )
            applied = await self.ws.backend.query(APPLICATIONS, {"applicant_id": uid})
        except BackendError as exc:
            if self.guard.is_current(token):
                self.ws.report("Failed to load projects", exc)
            raise
        if not self.guard.is_current(token):
            logger.debug("Discarding stale project feed fetch")
            return []
        self.ws.store.ingest_snapshot(PROJECTS, projects)
        self.ws.store.ingest_snapshot(APPLICATIONS, applied)
        return self.feed()

    async def _resync(self) -> None:
        if self.guard.scope is not None:
            await self._load_feed(self.guard.token)

    async def close_feed(self) -> None:
        self.guard.end()
        handle, self._handle = self._handle, None
        if handle is not None:
            await self.ws.subscriptions.unsubscribe(handle)

    def _on_event(self, event: PushEvent) -> None:
        self.ws.store.ingest_push_event(event)

    def feed(self) -> List[ProjectRead]:
        """Proyectos abiertos ajenos a los que aún no se ha postulado, más recientes primero."""
        uid = self.ws.user_id
        store = self.ws.store
        applied = {a.project_id for a in store.list(APPLICATIONS, lambda a: a.applicant_id == uid)}
        projects = store.list(
            PROJECTS,
            lambda p: p.status == "open" and p.creator_id != uid and p.id not in applied,
        )
        return list(reversed(projects))

    # ---------- proyectos ----------

    async def get_project(self, project_id: str) -> ProjectRead:
        project = self.ws.store.get(PROJECTS, project_id)
        if project is not None:
            return project
        try:
            row = await self.ws.backend.query_single(PROJECTS, {"id": project_id})
        except NotFoundError:
            raise
        except BackendError as exc:
            self.ws.report("Failed to load project", exc)
            raise
        return self.ws.store.ingest_snapshot(PROJECTS, [row])[0]

    async def create_project(self, data: ProjectCreate) -> ProjectRead:
        data = validate_project(data)
        store = self.ws.store
        row = {**data.model_dump(), "creator_id": self.ws.user_id, "status": "open"}
        token = store.apply_optimistic(PROJECTS, ProjectRead(id="pending", created_at=utcnow(), **row))
        try:
            created = await self.ws.backend.insert(PROJECTS, row)
        except (BackendError, ConflictError) as exc:
            store.rollback_optimistic(token)
            self.ws.report("Failed to create project", exc)
            raise
        project = store.confirm_optimistic(PROJECTS, token, created)
        logger.info("Project %s created by %s", project.id, self.ws.user_id)

        try:
            await self.add_member(project.id, self.ws.user_id, role="creator")
        except (BackendError, ConflictError) as exc:
            # el proyecto ya existe; solo falta la fila de miembro
            logger.error("Creator membership for project %s failed: %s", project.id, exc)
            self.ws.notify("warning", "Project created but failed to add you as a member")
            return project
        self.ws.notify("success", "Project created successfully!")
        return project

    async def set_status(self, project_id: str, status: str) -> ProjectRead:
        if status not in STATUS_ORDER:
            raise ClientValidationError(f"Unknown project status {status}")
        project = await self.get_project(project_id)
        if project.creator_id != self.ws.user_id:
            raise PermissionDenied("Only the project creator can change its status")
        if STATUS_ORDER[status] == STATUS_ORDER[project.status]:
            return project
        if STATUS_ORDER[status] < STATUS_ORDER[project.status]:
            raise InvalidTransition(f"Cannot move project from {project.status} back to {status}")

        store = self.ws.store
        token = store.apply_optimistic_update(PROJECTS, project.id, {"status": status})
        try:
            row = await self.ws.backend.update(PROJECTS, project.id, {"status": status})
        except BackendError as exc:
            store.rollback_optimistic(token)
            self.ws.report("Failed to update project status", exc)
            raise
        logger.info("Project %s moved to %s", project.id, status)
        return store.confirm_optimistic(PROJECTS, token, row)

    async def apply_capacity_policy(self, project_id: str) -> Optional[ProjectRead]:
        """Con ``auto_at_capacity`` el proyecto pasa a in_progress al completar el equipo."""
        if self.policy != ProjectStatusPolicy.AUTO_AT_CAPACITY:
            return None
        project = await self.get_project(project_id)
        if project.status != "open":
            return None
        members = await self.load_members(project_id)
        if len(members) < project.team_size:
            return None
        logger.info("Project %s reached its team size (%d)", project_id, project.team_size)
        return await self.set_status(project_id, "in_progress")

    # ---------- miembros ----------

    async def add_member(self, project_id: str, user_id: str, role: str = "member") -> ProjectMemberRead:
        store = self.ws.store
        row = {"project_id": project_id, "user_id": user_id, "role": role}
        placeholder = ProjectMemberRead(id="pending", created_at=utcnow(), joined_at=utcnow(), **row)
        token = store.apply_optimistic(MEMBERS, placeholder)
        try:
            created = await self.ws.backend.insert(MEMBERS, row)
        except (BackendError, ConflictError):
            store.rollback_optimistic(token)
            raise
        return store.confirm_optimistic(MEMBERS, token, created)

    async def load_members(self, project_id: str) -> List[ProjectMemberRead]:
        try:
            rows = await self.ws.backend.query(MEMBERS, {"project_id": project_id}, order="joined_at.asc")
        except BackendError as exc:
            self.ws.report("Failed to load members", exc)
            raise
        self.ws.store.ingest_snapshot(MEMBERS, rows)
        return self.members(project_id)

    def members(self, project_id: str) -> List[ProjectMemberRead]:
        return self.ws.store.list(MEMBERS, lambda m: m.project_id == project_id)

    async def remove_member(self, project_id: str, member_id: str) -> None:
        project = await self.get_project(project_id)
        if project.creator_id != self.ws.user_id:
            raise PermissionDenied("Only the project creator can remove members")
        member = self.ws.store.get(MEMBERS, member_id)
        if member is None:
            await self.load_members(project_id)
            member = self.ws.store.get(MEMBERS, member_id)
        if member is None or member.project_id != project_id:
            raise NotFoundError(f"Member {member_id} not found in project {project_id}", status=404)
        if member.role == "creator":
            raise InvalidTransition("The project creator cannot be removed")
        try:
            await self.ws.backend.delete(MEMBERS, member_id)
        except BackendError as exc:
            self.ws.report("Failed to remove member", exc)
            raise
        self.ws.store.ingest_push_event(PushEvent(table=MEMBERS, op="delete", old_row={"id": member_id}))
        logger.info("Member %s removed from project %s", member_id, project_id)

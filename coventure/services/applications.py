"""Postulaciones enviadas y recibidas, con revisión por parte del creador."""
import logging
from typing import TYPE_CHECKING, List, Optional, Set

from coventure.core.errors import (
    BackendError,
    ClientValidationError,
    ConflictError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
)
from coventure.schemas.entity import utcnow
from coventure.schemas.project_application import ApplicationRead
from coventure.schemas.realtime import PushEvent, Scope
from coventure.services.scope_guard import ScopeGuard
from coventure.utils.validators import optional_url

if TYPE_CHECKING:
    from coventure.services.workspace import Workspace

logger = logging.getLogger(__name__)

APPLICATIONS = "project_applications"
PROJECTS = "projects"
PROFILES = "profiles"

DECISIONS = ("accepted", "rejected")


class ApplicationService:
    def __init__(self, workspace: "Workspace"):
        self.ws = workspace
        self.guard = ScopeGuard()
        self._handles = []

    def owned_project_ids(self) -> Set[str]:
        uid = self.ws.user_id
        return {p.id for p in self.ws.store.list(PROJECTS, lambda p: p.creator_id == uid)}

    # ---------- pestaña de postulaciones ----------

    async def open_tab(self) -> None:
        await self.close_tab()
        uid = self.ws.user_id
        token = self.guard.begin("applications")
        outbound = Scope.for_table(APPLICATIONS, "applicant_id", uid)
        # el filtro realtime admite una sola igualdad; las recibidas se filtran aquí
        inbound = Scope.for_table(APPLICATIONS)
        self._handles = [
            await self.ws.subscriptions.subscribe(outbound, self._on_event, self._resync),
            await self.ws.subscriptions.subscribe(inbound, self._on_inbound_event, self._resync),
        ]
        await self.load(token)

    async def _resync(self) -> None:
        if self.guard.scope is not None:
            await self.load(self.guard.token)

    async def close_tab(self) -> None:
        self.guard.end()
        handles, self._handles = self._handles, []
        for handle in handles:
            await self.ws.subscriptions.unsubscribe(handle)

    def _on_event(self, event: PushEvent) -> None:
        self.ws.store.ingest_push_event(event)

    def _on_inbound_event(self, event: PushEvent) -> None:
        if event.op == "delete" or event.record.get("project_id") in self.owned_project_ids():
            self.ws.store.ingest_push_event(event)

    async def load(self, token: Optional[int] = None) -> None:
        """Trae enviadas, recibidas y los proyectos y perfiles que las acompañan."""
        backend = self.ws.backend
        uid = self.ws.user_id
        try:
            owned = await backend.query(PROJECTS, {"creator_id": uid})
            owned_ids = [row["id"] for row in owned]
            sent = await backend.query(APPLICATIONS, {"applicant_id": uid}, order="created_at.desc")
            received = []
            if owned_ids:
                received = await backend.query(APPLICATIONS, {"project_id": owned_ids}, order="created_at.desc")
            target_ids = sorted({row["project_id"] for row in sent} - set(owned_ids))
            targets = await backend.query(PROJECTS, {"id": target_ids}) if target_ids else []
            applicant_ids = sorted({row["applicant_id"] for row in received})
            applicants = await backend.query(PROFILES, {"user_id": applicant_ids}) if applicant_ids else []
        except BackendError as exc:
            if token is None or self.guard.is_current(token):
                self.ws.report("Failed to load applications", exc)
            raise
        if token is not None and not self.guard.is_current(token):
            logger.debug("Discarding stale applications fetch")
            return
        store = self.ws.store
        store.ingest_snapshot(PROJECTS, owned)
        store.ingest_snapshot(PROJECTS, targets)
        store.ingest_snapshot(PROFILES, applicants)
        store.ingest_snapshot(APPLICATIONS, sent)
        store.ingest_snapshot(APPLICATIONS, received)

    def sent(self) -> List[ApplicationRead]:
        uid = self.ws.user_id
        return list(reversed(self.ws.store.list(APPLICATIONS, lambda a: a.applicant_id == uid)))

    def received(self) -> List[ApplicationRead]:
        owned = self.owned_project_ids()
        return list(reversed(self.ws.store.list(APPLICATIONS, lambda a: a.project_id in owned)))

    # ---------- mutaciones ----------

    def existing_application(self, project_id: str) -> Optional[ApplicationRead]:
        uid = self.ws.user_id
        for application in self.ws.store.list(
            APPLICATIONS,
            lambda a: a.project_id == project_id and a.applicant_id == uid and a.status != "rejected",
        ):
            return application
        return None

    async def apply(self, project_id: str, linkedin_url: Optional[str] = None,
                    github_url: Optional[str] = None, portfolio_url: Optional[str] = None) -> ApplicationRead:
        if self.existing_application(project_id) is not None:
            raise ConflictError("You have already applied to this project")
        project = self.ws.store.get(PROJECTS, project_id)
        if project is not None and project.creator_id == self.ws.user_id:
            raise ClientValidationError("You cannot apply to your own project")
        if project is not None and project.status != "open":
            raise ClientValidationError("This project is no longer accepting applications")

        row = {
            "project_id": project_id,
            "applicant_id": self.ws.user_id,
            "status": "pending",
            "linkedin_url": optional_url(linkedin_url, "LinkedIn URL"),
            "github_url": optional_url(github_url, "GitHub URL"),
            "portfolio_url": optional_url(portfolio_url, "Portfolio URL"),
        }
        store = self.ws.store
        token = store.apply_optimistic(APPLICATIONS, ApplicationRead(id="pending", created_at=utcnow(), **row))
        try:
            created = await self.ws.backend.insert(APPLICATIONS, row)
        except ConflictError as exc:
            store.rollback_optimistic(token)
            self.ws.report("You have already applied to this project", exc)
            raise
        except BackendError as exc:
            store.rollback_optimistic(token)
            self.ws.report("Failed to submit application", exc)
            raise
        application = store.confirm_optimistic(APPLICATIONS, token, created)
        logger.info("Application %s sent to project %s", application.id, project_id)
        self.ws.notify("success", "Application submitted successfully!")
        return application

    async def set_status(self, application_id: str, status: str) -> ApplicationRead:
        if status not in DECISIONS:
            raise ClientValidationError(f"Unknown application status {status}")
        store = self.ws.store
        application = store.get(APPLICATIONS, application_id)
        if application is None:
            await self.load()
            application = store.get(APPLICATIONS, application_id)
        if application is None:
            raise NotFoundError(f"Application {application_id} not found", status=404)
        project = await self.ws.projects.get_project(application.project_id)
        if project.creator_id != self.ws.user_id:
            raise PermissionDenied("Only the project creator can review applications")
        if application.status != "pending":
            raise InvalidTransition(f"Application already {application.status}")

        try:
            token = store.apply_optimistic_update(APPLICATIONS, application.id, {"status": status})
        except KeyError as exc:
            raise InvalidTransition("Application is still being submitted") from exc
        try:
            row = await self.ws.backend.update(APPLICATIONS, application.id, {"status": status})
        except BackendError as exc:
            store.rollback_optimistic(token)
            self.ws.report(f"Failed to mark application as {status}", exc)
            raise
        updated = store.confirm_optimistic(APPLICATIONS, token, row)
        logger.info("Application %s %s", updated.id, status)

        if status == "accepted":
            try:
                await self.ws.projects.add_member(project.id, application.applicant_id)
            except ConflictError:
                logger.info("Applicant %s already a member of %s", application.applicant_id, project.id)
            except BackendError as exc:
                self.ws.report("Application accepted but failed to add member", exc)
                raise
            await self.ws.projects.apply_capacity_policy(project.id)
        self.ws.notify("success", f"Application {status}")
        return updated

import logging
from typing import TYPE_CHECKING, List, Optional

from coventure.core.errors import BackendError, ConflictError, NotFoundError, ProfileNotFound
from coventure.schemas.profile import ProfileCreate, ProfileRead, ProfileUpdate, Recommendation
from coventure.services.matching import recommend
from coventure.utils.validators import clean_tags, optional_url, require_text

if TYPE_CHECKING:
    from coventure.services.workspace import Workspace

logger = logging.getLogger(__name__)

PROFILES = "profiles"
PROJECTS = "projects"
URL_FIELDS = {"avatar_url": "Avatar URL", "linkedin_url": "LinkedIn URL",
              "github_url": "GitHub URL", "portfolio_url": "Portfolio URL"}


class ProfileService:
    def __init__(self, workspace: "Workspace"):
        self.ws = workspace

    def cached(self, user_id: Optional[str] = None) -> Optional[ProfileRead]:
        uid = user_id or self.ws.user_id
        for profile in self.ws.store.list(PROFILES, lambda p: p.user_id == uid):
            return profile
        return None

    async def get_profile(self, user_id: Optional[str] = None) -> ProfileRead:
        """Perfil del usuario; si no existe, la vista debe llevarle al onboarding."""
        uid = user_id or self.ws.user_id
        try:
            row = await self.ws.backend.query_single(PROFILES, {"user_id": uid})
        except NotFoundError as exc:
            logger.info("No profile for user %s", uid)
            raise ProfileNotFound(f"No profile for user {uid}", status=404, code=exc.code) from exc
        except BackendError as exc:
            self.ws.report("Failed to fetch profile", exc)
            raise
        return self.ws.store.ingest_snapshot(PROFILES, [row])[0]

    async def complete_onboarding(self, data: ProfileCreate) -> ProfileRead:
        row = data.model_dump()
        row["full_name"] = require_text(data.full_name, "Full name")
        row["bio"] = require_text(data.bio, "Bio")
        row["skills"] = clean_tags(data.skills)
        row["interests"] = clean_tags(data.interests)
        for field, label in URL_FIELDS.items():
            row[field] = optional_url(row.get(field), label)
        if data.project_status == "has_idea":
            row["project_idea"] = require_text(data.project_idea, "Project idea")
        row["user_id"] = self.ws.user_id
        try:
            created = await self.ws.backend.insert(PROFILES, row)
        except ConflictError as exc:
            self.ws.report("Profile already exists", exc)
            raise
        except BackendError as exc:
            self.ws.report("Failed to save profile", exc)
            raise
        logger.info("Onboarding completed for %s", self.ws.user_id)
        self.ws.notify("success", "Profile created successfully!")
        return self.ws.store.ingest_snapshot(PROFILES, [created])[0]

    async def update_profile(self, patch: ProfileUpdate) -> ProfileRead:
        changes = patch.model_dump(exclude_unset=True)
        for field in ("full_name", "bio"):
            if field in changes:
                changes[field] = require_text(changes[field], field.replace("_", " ").capitalize())
        for field in ("skills", "interests"):
            if field in changes:
                changes[field] = clean_tags(changes[field])
        for field, label in URL_FIELDS.items():
            if field in changes:
                changes[field] = optional_url(changes[field], label)

        profile = self.cached() or await self.get_profile()
        if not changes:
            return profile
        store = self.ws.store
        token = store.apply_optimistic_update(PROFILES, profile.id, changes)
        try:
            row = await self.ws.backend.update(PROFILES, profile.id, changes)
        except BackendError as exc:
            store.rollback_optimistic(token)
            self.ws.report("Failed to update profile", exc)
            raise
        self.ws.notify("success", "Profile updated")
        return store.confirm_optimistic(PROFILES, token, row)

    async def recommendations(self, limit: int = 5) -> List[Recommendation]:
        profile = await self.get_profile()
        candidates = self.ws.projects.feed()
        if not candidates:
            try:
                rows = await self.ws.backend.query(
                    PROJECTS, {"status": "open", "creator_id": ("neq", self.ws.user_id)},
                    order="created_at.desc",
                )
            except BackendError as exc:
                self.ws.report("Failed to load projects", exc)
                raise
            self.ws.store.ingest_snapshot(PROJECTS, rows)
            candidates = self.ws.projects.feed()
        return recommend(profile, candidates, limit=limit)

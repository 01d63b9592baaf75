from typing import List

from fastapi import APIRouter, Depends, Query, status

from coventure.api.endpoints.auth import get_workspace
from coventure.schemas.profile import ProfileCreate, ProfileRead, ProfileUpdate, Recommendation
from coventure.services.workspace import Workspace

router = APIRouter()


@router.get("/me", response_model=ProfileRead)
async def read_my_profile(workspace: Workspace = Depends(get_workspace)):
    return await workspace.profiles.get_profile()


@router.post("/", response_model=ProfileRead, status_code=status.HTTP_201_CREATED)
async def complete_onboarding(
    profile_in: ProfileCreate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.profiles.complete_onboarding(profile_in)


@router.put("/me", response_model=ProfileRead)
async def update_my_profile(
    profile_in: ProfileUpdate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.profiles.update_profile(profile_in)


@router.get("/me/recommendations", response_model=List[Recommendation])
async def recommended_projects(
    limit: int = Query(5, ge=1, le=50),
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.profiles.recommendations(limit=limit)

from typing import List

from fastapi import APIRouter, Depends, status

from coventure.api.endpoints.auth import get_workspace
from coventure.schemas.project import ProjectCreate, ProjectMemberRead, ProjectRead, ProjectStatusUpdate
from coventure.services.workspace import Workspace

router = APIRouter()


@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_in: ProjectCreate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.projects.create_project(project_in)


@router.get("/feed", response_model=List[ProjectRead])
async def project_feed(workspace: Workspace = Depends(get_workspace)):
    return workspace.projects.feed()


@router.post("/feed/subscription", response_model=List[ProjectRead])
async def open_project_feed(workspace: Workspace = Depends(get_workspace)):
    return await workspace.projects.open_feed()


@router.delete("/feed/subscription", status_code=status.HTTP_204_NO_CONTENT)
async def close_project_feed(workspace: Workspace = Depends(get_workspace)):
    await workspace.projects.close_feed()


@router.patch("/{project_id}/status", response_model=ProjectRead)
async def update_project_status(
    project_id: str,
    status_in: ProjectStatusUpdate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.projects.set_status(project_id, status_in.status)


@router.get("/{project_id}/members", response_model=List[ProjectMemberRead])
async def list_members(project_id: str, workspace: Workspace = Depends(get_workspace)):
    return await workspace.projects.load_members(project_id)


@router.delete("/{project_id}/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    project_id: str,
    member_id: str,
    workspace: Workspace = Depends(get_workspace),
):
    await workspace.projects.remove_member(project_id, member_id)

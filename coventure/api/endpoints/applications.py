from typing import List

from fastapi import APIRouter, Depends, status

from coventure.api.endpoints.auth import get_workspace
from coventure.schemas.project_application import (
    ApplicationCreate,
    ApplicationRead,
    ApplicationStatusUpdate,
    ApplicationTab,
)
from coventure.services.workspace import Workspace

router = APIRouter()


@router.post("/", response_model=ApplicationRead, status_code=status.HTTP_201_CREATED)
async def apply_to_project(
    application_in: ApplicationCreate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.applications.apply(
        application_in.project_id,
        linkedin_url=application_in.linkedin_url,
        github_url=application_in.github_url,
        portfolio_url=application_in.portfolio_url,
    )


@router.get("/sent", response_model=List[ApplicationRead])
async def sent_applications(workspace: Workspace = Depends(get_workspace)):
    return workspace.applications.sent()


@router.get("/received", response_model=List[ApplicationRead])
async def received_applications(workspace: Workspace = Depends(get_workspace)):
    return workspace.applications.received()


@router.post("/subscription", response_model=ApplicationTab)
async def open_applications_tab(workspace: Workspace = Depends(get_workspace)):
    await workspace.applications.open_tab()
    return ApplicationTab(sent=workspace.applications.sent(), received=workspace.applications.received())


@router.delete("/subscription", status_code=status.HTTP_204_NO_CONTENT)
async def close_applications_tab(workspace: Workspace = Depends(get_workspace)):
    await workspace.applications.close_tab()


@router.patch("/{application_id}", response_model=ApplicationRead)
async def review_application(
    application_id: str,
    status_in: ApplicationStatusUpdate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.applications.set_status(application_id, status_in.status)

from typing import List, Literal, Optional
from pydantic import BaseModel
from datetime import datetime

from coventure.schemas.entity import Entity

ApplicationStatus = Literal["pending", "accepted", "rejected"]


class ApplicationRead(Entity):
    project_id: str
    applicant_id: str
    status: ApplicationStatus = "pending"
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None
    updated_at: Optional[datetime] = None


class ApplicationCreate(BaseModel):
    project_id: str
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None


class ApplicationStatusUpdate(BaseModel):
    status: Literal["accepted", "rejected"]


class ApplicationTab(BaseModel):
    sent: List[ApplicationRead]
    received: List[ApplicationRead]

from typing import List, Literal, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from coventure.schemas.entity import Entity

ProjectStatus = Literal["open", "in_progress", "completed"]
MemberRole = Literal["creator", "member"]


class ProjectRead(Entity):
    creator_id: str
    title: str
    description: str
    required_skills: List[str] = Field(default_factory=list)
    team_size: int = 1
    timeline: str = ""
    status: ProjectStatus = "open"
    updated_at: Optional[datetime] = None


class ProjectCreate(BaseModel):
    title: str
    description: str
    required_skills: List[str] = Field(default_factory=list)
    team_size: int = 1
    timeline: str


class ProjectStatusUpdate(BaseModel):
    status: ProjectStatus


class ProjectMemberRead(Entity):
    project_id: str
    user_id: str
    role: MemberRole = "member"
    joined_at: Optional[datetime] = None

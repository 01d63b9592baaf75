from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime

from coventure.schemas.entity import utcnow


class ProjectMember(SQLModel, table=True):
    __tablename__ = "project_members"
    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),)

    id: Optional[str] = Field(default=None, primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    user_id: str = Field(index=True)
    role: str = "member"  # "creator" | "member"
    joined_at: datetime = Field(default_factory=utcnow)

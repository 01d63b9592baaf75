from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import Index, text
from datetime import datetime

from coventure.schemas.entity import utcnow


class ProjectApplication(SQLModel, table=True):
    __tablename__ = "project_applications"
    # Una sola solicitud no rechazada por (proyecto, candidato)
    __table_args__ = (
        Index(
            "uq_project_applications_active",
            "project_id",
            "applicant_id",
            unique=True,
            postgresql_where=text("status <> 'rejected'"),
            sqlite_where=text("status <> 'rejected'"),
        ),
    )

    id: Optional[str] = Field(default=None, primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    applicant_id: str = Field(index=True)
    status: str = "pending"  # "pending" | "accepted" | "rejected"
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

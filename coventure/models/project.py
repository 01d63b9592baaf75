from typing import List, Optional
from sqlmodel import SQLModel, Field, Column
from datetime import datetime
from sqlalchemy.dialects.postgresql import JSON

from coventure.schemas.entity import utcnow


class Project(SQLModel, table=True):
    __tablename__ = "projects"

    id: Optional[str] = Field(default=None, primary_key=True)
    creator_id: str = Field(index=True)
    title: str
    description: str
    required_skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    team_size: int = 1
    timeline: str
    status: str = "open"  # "open" | "in_progress" | "completed"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

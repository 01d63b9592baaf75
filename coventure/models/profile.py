from typing import List, Optional
from sqlmodel import SQLModel, Field, Column
from datetime import datetime
from sqlalchemy.dialects.postgresql import JSON

from coventure.schemas.entity import utcnow


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: Optional[str] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    interests: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None
    project_status: Optional[str] = None   # "looking" | "has_idea"
    project_idea: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

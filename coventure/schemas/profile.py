from typing import List, Literal, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from coventure.schemas.entity import Entity
from coventure.schemas.project import ProjectRead


class ProfileRead(Entity):
    user_id: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None
    project_status: Optional[str] = None
    project_idea: Optional[str] = None
    updated_at: Optional[datetime] = None


class ProfileCreate(BaseModel):
    full_name: str
    bio: str
    avatar_url: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    interests: List[str] = Field(default_factory=list)
    project_status: Literal["looking", "has_idea"] = "looking"
    project_idea: Optional[str] = None
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    skills: Optional[List[str]] = None
    interests: Optional[List[str]] = None
    project_status: Optional[Literal["looking", "has_idea"]] = None
    project_idea: Optional[str] = None
    linkedin_url: Optional[str] = None
    github_url: Optional[str] = None
    portfolio_url: Optional[str] = None


class Recommendation(BaseModel):
    project: ProjectRead
    score: int
    matched_skills: List[str]

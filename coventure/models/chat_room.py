from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from datetime import datetime

from coventure.schemas.entity import utcnow


class ChatRoom(SQLModel, table=True):
    __tablename__ = "chat_rooms"
    __table_args__ = (UniqueConstraint("project_id", "application_id", name="uq_chat_rooms_project_application"),)

    id: Optional[str] = Field(default=None, primary_key=True)
    project_id: str = Field(foreign_key="projects.id", index=True)
    application_id: str = Field(foreign_key="project_applications.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

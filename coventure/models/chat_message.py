from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from coventure.schemas.entity import utcnow


class ChatMessage(SQLModel, table=True):
    __tablename__ = "chat_messages"

    id: Optional[str] = Field(default=None, primary_key=True)
    room_id: str = Field(foreign_key="chat_rooms.id", index=True)
    sender_id: str = Field(index=True)
    content: str
    created_at: datetime = Field(default_factory=utcnow)

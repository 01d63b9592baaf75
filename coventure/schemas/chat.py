from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from coventure.schemas.entity import Entity


class ChatRoomRead(Entity):
    project_id: str
    application_id: str
    updated_at: Optional[datetime] = None


class ChatRoomCreate(BaseModel):
    project_id: str
    application_id: str


class ChatMessageRead(Entity):
    room_id: str
    sender_id: str
    content: str
    pending: bool = False


class ChatMessageCreate(BaseModel):
    content: str

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime

from coventure.schemas.entity import utcnow


class StoredSession(SQLModel, table=True):
    """Sesión de auth persistida localmente; no forma parte del esquema del backend."""
    __tablename__ = "auth_sessions"

    user_id: str = Field(primary_key=True)
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

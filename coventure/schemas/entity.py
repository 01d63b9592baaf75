from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Entity(BaseModel):
    """Fila del backend tal y como la guarda el store del cliente."""
    id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
        extra = "ignore"

    @field_validator("created_at", "updated_at", "joined_at", mode="after", check_fields=False)
    @classmethod
    def _normalize_timestamps(cls, value):
        return as_utc(value)

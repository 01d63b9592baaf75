from enum import Enum
from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from coventure.schemas.entity import utcnow


class ChannelStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"


class SubscriptionState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    RETRYING = "retrying"
    DEGRADED = "degraded"
    CLOSED = "closed"


class Scope(BaseModel):
    """Filtro de eventos realtime: una tabla y, opcionalmente, una igualdad sobre una columna."""
    table: str
    column: Optional[str] = None
    value: Optional[str] = None
    event: Literal["*", "INSERT", "UPDATE", "DELETE"] = "*"

    class Config:
        frozen = True

    @classmethod
    def for_table(cls, table: str, column: Optional[str] = None, value: Any = None, event: str = "*") -> "Scope":
        return cls(table=table, column=column, value=None if value is None else str(value), event=event)

    @property
    def filter(self) -> Optional[str]:
        if self.column is None:
            return None
        return f"{self.column}=eq.{self.value}"

    @property
    def key(self) -> str:
        return f"{self.table}:{self.filter or '*'}:{self.event}"

    def matches(self, table: str, row: Dict[str, Any]) -> bool:
        if table != self.table:
            return False
        if self.column is None:
            return True
        # los DELETE sin REPLICA IDENTITY FULL solo traen la clave primaria
        if self.column not in row:
            return True
        return str(row[self.column]) == self.value


class PushEvent(BaseModel):
    table: str
    op: Literal["insert", "update", "delete"]
    row: Dict[str, Any] = Field(default_factory=dict)
    old_row: Dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[datetime] = None

    @property
    def record(self) -> Dict[str, Any]:
        return self.row or self.old_row

    @classmethod
    def from_postgres_change(cls, data: Dict[str, Any]) -> "PushEvent":
        return cls(
            table=data["table"],
            op=str(data.get("type") or data.get("eventType")).lower(),
            row=data.get("record") or data.get("new") or {},
            old_row=data.get("old_record") or data.get("old") or {},
            commit_timestamp=data.get("commit_timestamp"),
        )


class Notice(BaseModel):
    level: Literal["info", "success", "error", "warning"] = "info"
    message: str
    created_at: datetime = Field(default_factory=utcnow)


class SubscriptionStatus(BaseModel):
    scope: str
    state: SubscriptionState
    attempt: int = 0


class StoreChange(BaseModel):
    table: str
    op: Literal["upsert", "delete"]
    id: str
    pending: bool = False

"""Backend en memoria con la misma superficie que BackendClient, para los tests."""
import itertools
import os
import sys
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

sys.path.append(str(Path(__file__).resolve().parents[1]))

os.environ.setdefault("backend_url", "http://backend.test")
os.environ.setdefault("backend_anon_key", "anon-key")
os.environ.setdefault("backend_jwt_secret", "test-secret")
os.environ.setdefault("session_store_url", "sqlite://")

from coventure.core.config import load_settings
from coventure.core.errors import ConflictError, NotFoundError
from coventure.schemas.auth import AuthSession
from coventure.schemas.realtime import ChannelStatus, PushEvent, Scope
from coventure.services.session import SessionState
from coventure.services.workspace import Workspace

UNIQUE_KEYS = {
    "profiles": [("user_id",)],
    "project_members": [("project_id", "user_id")],
    "chat_rooms": [("project_id", "application_id")],
}
DEFAULTS = {
    "projects": {"status": "open", "team_size": 1, "required_skills": []},
    "project_applications": {"status": "pending"},
    "project_members": {"role": "member"},
}
TIMESTAMPS = {
    "profiles": ("created_at", "updated_at"),
    "projects": ("created_at", "updated_at"),
    "project_applications": ("created_at", "updated_at"),
    "project_members": ("joined_at",),
    "chat_rooms": ("created_at", "updated_at"),
    "chat_messages": ("created_at",),
}


def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    for column, value in (filters or {}).items():
        current = row.get(column)
        if isinstance(value, tuple):
            op, operand = value
            if op == "neq" and current == operand:
                return False
            if op == "in" and current not in operand:
                return False
        elif isinstance(value, (list, set, frozenset)):
            if current not in value:
                return False
        elif value is None:
            if current is not None:
                return False
        elif current != value:
            return False
    return True


class FakeChannel:
    def __init__(self, backend: "FakeBackend", scope: Scope, on_event, on_state):
        self.backend = backend
        self.scope = scope
        self.on_event = on_event
        self.on_state = on_state
        self.closed = False

    def emit_state(self, status: ChannelStatus) -> None:
        self.on_state(status)

    def emit(self, event: PushEvent) -> None:
        if not self.closed:
            self.on_event(event)

    async def close(self) -> None:
        self.closed = True


class FakeBackend:
    def __init__(self, channel_status: Optional[ChannelStatus] = ChannelStatus.SUBSCRIBED):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.calls: List[Tuple[str, str]] = []
        self.channels: List[FakeChannel] = []
        self.channel_status = channel_status
        self.open_errors: List[Exception] = []
        self._failures: Dict[Tuple[str, str], Exception] = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.access_token: Optional[str] = "token"
        self.signed_out = False
        self.closed = False

    # ---------- utilidades de test ----------

    def now(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def fail(self, op: str, table: str, exc: Exception) -> None:
        """La siguiente llamada ``op`` sobre ``table`` lanza ``exc``."""
        self._failures[(op, table)] = exc

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        exc = self._failures.pop((op, table), None)
        if exc is not None:
            raise exc

    def seed(self, table: str, **row) -> Dict[str, Any]:
        record = self._stamp(table, row)
        self.tables[table][record["id"]] = record
        return dict(record)

    def _stamp(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        record = {"id": f"{table}-{next(self._ids)}"}
        now = self.now()
        for field in TIMESTAMPS.get(table, ("created_at",)):
            record[field] = now
        record.update(DEFAULTS.get(table, {}))
        record.update(row)
        return record

    def calls_to(self, op: str, table: Optional[str] = None) -> int:
        return sum(1 for o, t in self.calls if o == op and (table is None or t == table))

    def push(self, table: str, op: str, row: Optional[Dict[str, Any]] = None,
             old_row: Optional[Dict[str, Any]] = None) -> PushEvent:
        """Entrega un cambio a todos los canales abiertos sobre la tabla."""
        event = PushEvent(table=table, op=op, row=row or {}, old_row=old_row or {})
        for channel in list(self.channels):
            if channel.scope.table == table:
                channel.emit(event)
        return event

    def open_channels(self) -> List[FakeChannel]:
        return [c for c in self.channels if not c.closed]

    # ---------- superficie del cliente ----------

    async def query(self, table: str, filters=None, order: Optional[str] = None,
                    limit: Optional[int] = None, select: str = "*") -> List[Dict[str, Any]]:
        self._check("query", table)
        rows = [dict(r) for r in self.tables[table].values() if _matches(r, filters)]
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: str(r.get(column) or ""), reverse=direction == "desc")
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def query_single(self, table: str, filters) -> Dict[str, Any]:
        rows = await self.query(table, filters)
        if not rows:
            raise NotFoundError(f"No {table} row matches {filters}", status=406, code="PGRST116")
        return rows[0]

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        self._check("insert", table)
        for key in UNIQUE_KEYS.get(table, []):
            for existing in self.tables[table].values():
                if all(existing.get(k) == row.get(k) for k in key):
                    raise ConflictError(f"duplicate key value violates unique constraint on {table}")
        if table == "project_applications":
            for existing in self.tables[table].values():
                if (existing["project_id"], existing["applicant_id"]) == (row["project_id"], row["applicant_id"]) \
                        and existing.get("status") != "rejected":
                    raise ConflictError("duplicate key value violates unique constraint uq_project_applications_active")
        record = self._stamp(table, row)
        self.tables[table][record["id"]] = record
        return dict(record)

    async def update(self, table: str, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        self._check("update", table)
        record = self.tables[table].get(entity_id)
        if record is None:
            raise NotFoundError(f"No {table} row with id {entity_id}", status=404)
        record.update(patch)
        if "updated_at" in TIMESTAMPS.get(table, ()):
            record["updated_at"] = self.now()
        return dict(record)

    async def delete(self, table: str, entity_id: str) -> None:
        self._check("delete", table)
        self.tables[table].pop(entity_id, None)

    async def open_channel(self, scope: Scope, on_event, on_state) -> FakeChannel:
        self.calls.append(("open_channel", scope.key))
        if self.open_errors:
            raise self.open_errors.pop(0)
        channel = FakeChannel(self, scope, on_event, on_state)
        self.channels.append(channel)
        if self.channel_status is not None:
            on_state(self.channel_status)
        return channel

    async def sign_in(self, email: str, password: str) -> AuthSession:
        return AuthSession(user_id="user-1", access_token="token", refresh_token="refresh")

    async def refresh(self, refresh_token: str) -> AuthSession:
        self.calls.append(("refresh", "auth"))
        return AuthSession(
            user_id="user-1", access_token="token-2", refresh_token="refresh-2",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        return {"id": "user-1", "email": "ada@example.com"}

    async def sign_out(self) -> None:
        self.calls.append(("sign_out", "auth"))
        self.signed_out = True
        self.access_token = None

    async def set_access_token(self, token: str) -> None:
        self.access_token = token

    async def close(self) -> None:
        self.closed = True


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_settings(**overrides):
    values = {"backend_url": "http://backend.test", "backend_anon_key": "anon-key"}
    values.update(overrides)
    return load_settings(**values)


def make_workspace(backend: Optional[FakeBackend] = None, user_id: str = "user-1",
                   sleep=None, session_store=None, **overrides) -> Workspace:
    session = SessionState(user_id, "token", store=session_store).init()
    return Workspace(make_settings(**overrides), backend or FakeBackend(), session, sleep=sleep or RecordingSleep())

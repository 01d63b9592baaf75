"""Store reconciliador del cliente.

Mantiene, por tabla, el mapa id -> entidad y fusiona tres fuentes:
snapshots obtenidos por consulta, deltas empujados por el canal realtime y
mutaciones optimistas locales. Toda mutación de estado pasa por aquí.
"""
import itertools
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type

from coventure.schemas.chat import ChatMessageRead, ChatRoomRead
from coventure.schemas.entity import Entity, utcnow
from coventure.schemas.profile import ProfileRead
from coventure.schemas.project import ProjectMemberRead, ProjectRead
from coventure.schemas.project_application import ApplicationRead
from coventure.schemas.realtime import PushEvent, StoreChange

logger = logging.getLogger(__name__)

ENTITY_SCHEMAS: Dict[str, Type[Entity]] = {
    "profiles": ProfileRead,
    "projects": ProjectRead,
    "project_applications": ApplicationRead,
    "project_members": ProjectMemberRead,
    "chat_rooms": ChatRoomRead,
    "chat_messages": ChatMessageRead,
}

# Campos con los que una fila confirmada se empareja con su marcador optimista
CORRELATION_FIELDS: Dict[str, Tuple[str, ...]] = {
    "profiles": ("user_id",),
    "projects": ("creator_id", "title"),
    "project_applications": ("project_id", "applicant_id"),
    "project_members": ("project_id", "user_id"),
    "chat_rooms": ("project_id", "application_id"),
    "chat_messages": ("room_id", "sender_id", "content"),
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def version_stamp(entity: Entity) -> Optional[datetime]:
    for field in ("updated_at", "created_at", "joined_at"):
        value = getattr(entity, field, None)
        if value is not None:
            return value
    return None


def order_stamp(entity: Entity) -> datetime:
    return getattr(entity, "created_at", None) or getattr(entity, "joined_at", None) or _EPOCH


class _Pending:
    def __init__(self, token: str, table: str, entity: Optional[Entity] = None,
                 target_id: Optional[str] = None, patch: Optional[Dict[str, Any]] = None):
        self.token = token
        self.table = table
        self.entity = entity          # inserción optimista
        self.target_id = target_id    # actualización optimista
        self.patch = patch or {}

    @property
    def is_insert(self) -> bool:
        return self.entity is not None


class ReconcilingStore:
    def __init__(
        self,
        schemas: Optional[Dict[str, Type[Entity]]] = None,
        correlation: Optional[Dict[str, Tuple[str, ...]]] = None,
        reconcile_window_seconds: float = 120.0,
    ):
        self._schemas = dict(schemas or ENTITY_SCHEMAS)
        self._correlation = dict(correlation or CORRELATION_FIELDS)
        self._window = timedelta(seconds=reconcile_window_seconds)
        self._rows: Dict[str, Dict[str, Entity]] = {table: {} for table in self._schemas}
        self._arrival: Dict[str, Dict[str, int]] = {table: {} for table in self._schemas}
        self._tombstones: Dict[str, Set[str]] = {table: set() for table in self._schemas}
        self._pending: Dict[str, _Pending] = {}
        self._resolved: Dict[str, str] = {}
        self._counter = itertools.count()
        self._listeners: List[Callable[[StoreChange], None]] = []

    # ---------- listeners ----------

    def add_listener(self, callback: Callable[[StoreChange], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def _notify(self, table: str, op: str, entity_id: str, pending: bool = False) -> None:
        change = StoreChange(table=table, op=op, id=entity_id, pending=pending)
        for callback in list(self._listeners):
            try:
                callback(change)
            except Exception:
                logger.exception("Store listener failed for %s %s", table, entity_id)

    # ---------- ingestión ----------

    def parse(self, table: str, row: Dict[str, Any]) -> Entity:
        return self._schemas[table].model_validate(row)

    def ingest_snapshot(self, table: str, rows: Iterable[Dict[str, Any]]) -> List[Entity]:
        """Fusiona un resultado de consulta (completo o parcial) por id."""
        merged = []
        for row in rows:
            entity = self.parse(table, row)
            if entity.id in self._tombstones[table]:
                continue
            merged.append(self._merge(table, entity))
        return merged

    def ingest_push_event(self, event: PushEvent) -> Optional[Entity]:
        table = event.table
        if table not in self._schemas:
            logger.debug("Ignoring push event for unknown table %s", table)
            return None

        if event.op == "delete":
            entity_id = event.record.get("id")
            if entity_id is not None:
                self._remove(table, str(entity_id))
            return None

        entity = self.parse(table, event.row)
        if entity.id in self._tombstones[table]:
            return None
        if event.op == "insert" and entity.id in self._rows[table]:
            # inserción duplicada (reconexión o carrera con el fetch)
            return self._rows[table][entity.id]
        return self._merge(table, entity)

    def _merge(self, table: str, entity: Entity, reconcile: bool = True) -> Entity:
        rows = self._rows[table]
        current = rows.get(entity.id)
        if current is None:
            rows[entity.id] = entity
            self._arrival[table][entity.id] = next(self._counter)
            if reconcile:
                self._reconcile(table, entity)
            self._notify(table, "upsert", entity.id)
            return entity

        incoming_stamp = version_stamp(entity)
        current_stamp = version_stamp(current)
        if incoming_stamp is not None and current_stamp is not None and incoming_stamp < current_stamp:
            logger.debug("Discarding stale %s row %s", table, entity.id)
            return current

        data = current.model_dump()
        data.update(entity.model_dump(exclude_unset=True))
        updated = self._schemas[table].model_validate(data)
        rows[entity.id] = updated
        self._notify(table, "upsert", entity.id)
        return updated

    def _remove(self, table: str, entity_id: str) -> None:
        self._tombstones[table].add(entity_id)
        for token in [t for t, p in self._pending.items() if p.target_id == entity_id and p.table == table]:
            del self._pending[token]
        if self._rows[table].pop(entity_id, None) is not None:
            self._arrival[table].pop(entity_id, None)
            self._notify(table, "delete", entity_id)

    # ---------- optimistas ----------

    def _correlation_key(self, table: str, entity: Entity) -> Tuple:
        return tuple(getattr(entity, field, None) for field in self._correlation.get(table, ()))

    def _reconcile(self, table: str, confirmed: Entity) -> None:
        key = self._correlation_key(table, confirmed)
        if not key:
            return
        candidates = [
            p for p in self._pending.values()
            if p.is_insert and p.table == table and self._correlation_key(table, p.entity) == key
            and self._within_window(p.entity, confirmed)
        ]
        if not candidates:
            return
        oldest = min(candidates, key=lambda p: self._arrival[table].get(p.token, 0))
        self._resolve(oldest.token, confirmed.id)

    def _within_window(self, optimistic: Entity, confirmed: Entity) -> bool:
        a = getattr(optimistic, "created_at", None)
        b = getattr(confirmed, "created_at", None)
        if a is None or b is None:
            return True
        return abs(a - b) <= self._window

    def _resolve(self, token: str, confirmed_id: Optional[str]) -> None:
        pending = self._pending.pop(token, None)
        if pending is None:
            return
        if pending.is_insert:
            self._arrival[pending.table].pop(token, None)
            if confirmed_id is not None:
                self._resolved[token] = confirmed_id
            self._notify(pending.table, "delete", token)
        else:
            self._notify(pending.table, "upsert", pending.target_id)

    def apply_optimistic(self, table: str, entity: Entity, temp_id: Optional[str] = None) -> str:
        """Inserta un marcador local visible hasta que llegue la fila confirmada."""
        token = temp_id or f"temp-{uuid.uuid4()}"
        update = {"id": token}
        if getattr(entity, "created_at", None) is None and "created_at" in type(entity).model_fields:
            update["created_at"] = utcnow()
        placeholder = entity.model_copy(update=update)
        self._pending[token] = _Pending(token, table, entity=placeholder)
        self._arrival[table][token] = next(self._counter)
        self._notify(table, "upsert", token, pending=True)
        return token

    def apply_optimistic_update(self, table: str, entity_id: str, patch: Dict[str, Any]) -> str:
        if entity_id not in self._rows[table]:
            raise KeyError(f"{table} row {entity_id} is not loaded")
        token = f"temp-{uuid.uuid4()}"
        self._pending[token] = _Pending(token, table, target_id=entity_id, patch=dict(patch))
        self._notify(table, "upsert", entity_id, pending=True)
        return token

    def confirm_optimistic(self, table: str, token: str, row: Dict[str, Any]) -> Entity:
        """Sustituye el marcador por la fila devuelta por el backend; idempotente si el push llegó antes."""
        entity = self.parse(table, row)
        self._resolve(token, entity.id)
        if entity.id in self._tombstones[table]:
            return entity
        # el marcador propio ya se resolvió; no debe consumir el de otro envío en vuelo
        return self._merge(table, entity, reconcile=False)

    def rollback_optimistic(self, token: str) -> None:
        if token in self._pending:
            logger.info("Rolling back optimistic change %s", token)
            self._resolve(token, None)

    # ---------- lectura ----------

    def _visible(self, table: str, entity: Entity) -> Entity:
        patches = [p.patch for p in self._pending.values() if not p.is_insert and p.table == table and p.target_id == entity.id]
        if not patches:
            return entity
        data = entity.model_dump()
        for patch in patches:
            data.update(patch)
        return self._schemas[table].model_validate(data)

    def get(self, table: str, entity_id: str) -> Optional[Entity]:
        entity_id = self._resolved.get(entity_id, entity_id)
        pending = self._pending.get(entity_id)
        if pending is not None and pending.is_insert:
            return pending.entity
        entity = self._rows[table].get(entity_id)
        return self._visible(table, entity) if entity is not None else None

    def is_pending(self, entity_id: str) -> bool:
        if entity_id in self._pending:
            return True
        return any(p.target_id == entity_id for p in self._pending.values())

    def list(self, table: str, predicate: Optional[Callable[[Entity], bool]] = None) -> List[Entity]:
        """Entidades visibles ordenadas por created_at y, a igualdad, por orden de llegada."""
        arrival = self._arrival[table]
        entities = [self._visible(table, e) for e in self._rows[table].values()]
        entities.extend(p.entity for p in self._pending.values() if p.is_insert and p.table == table)
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return sorted(entities, key=lambda e: (order_stamp(e), arrival.get(e.id, 0)))

    def tables(self) -> Sequence[str]:
        return list(self._schemas)

    def clear(self) -> None:
        for table in self._schemas:
            self._rows[table].clear()
            self._arrival[table].clear()
            self._tombstones[table].clear()
        self._pending.clear()
        self._resolved.clear()

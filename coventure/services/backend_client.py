"""Adaptador fino sobre la API REST, de auth y realtime del backend."""
import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import aiohttp

from coventure.core.config import Settings
from coventure.core.errors import BackendError, ConflictError, NotFoundError, TransientBackendError
from coventure.schemas.auth import AuthSession
from coventure.schemas.realtime import Scope
from coventure.services.realtime import EventHandler, RealtimeChannel, RealtimeSocket, StateHandler

logger = logging.getLogger(__name__)

FilterValue = Union[str, int, bool, None, Sequence[Any], Tuple[str, Any]]

UNIQUE_VIOLATION = "23505"
NO_ROWS = "PGRST116"


def encode_filter(value: FilterValue) -> str:
    """Traduce un valor de filtro al operador PostgREST correspondiente."""
    if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], str):
        op, operand = value
        if op in ("in", "not.in"):
            return f"{op}.({','.join(str(v) for v in operand)})"
        return f"{op}.{_literal(operand)}"
    if isinstance(value, (list, set, frozenset)):
        return f"in.({','.join(str(v) for v in value)})"
    if value is None:
        return "is.null"
    return f"eq.{_literal(value)}"


def _literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class BackendClient:
    def __init__(self, settings: Settings, access_token: Optional[str] = None,
                 http: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.access_token = access_token
        self._http = http
        self._owns_http = http is None
        self._socket: Optional[RealtimeSocket] = None

    # ---------- infraestructura ----------

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout))
            self._owns_http = True
        return self._http

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.settings.backend_anon_key,
            "Authorization": f"Bearer {self.access_token or self.settings.backend_anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(self, method: str, url: str, *, params: Optional[Dict[str, str]] = None,
                       json_body: Any = None, prefer: Optional[str] = None,
                       headers: Optional[Dict[str, str]] = None) -> Any:
        request_headers = self._headers(prefer)
        if headers:
            request_headers.update(headers)
        try:
            async with self._session().request(
                method, url, params=params, json=json_body, headers=request_headers,
                timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout),
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise self._error_for(response.status, body, method, url)
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Backend request %s %s failed: %s", method, url, exc)
            raise TransientBackendError(f"Error calling backend at {url}: {exc}") from exc

    def _error_for(self, status: int, body: str, method: str, url: str) -> Exception:
        code = None
        message = body
        try:
            data = json.loads(body) if body else {}
            code = data.get("code") or data.get("error_code")
            message = data.get("message") or data.get("msg") or data.get("error_description") or body
        except (ValueError, AttributeError):
            pass
        logger.error("Backend request %s %s returned %s: %s", method, url, status, message)
        if code == UNIQUE_VIOLATION or status == 409:
            return ConflictError(message)
        if code == NO_ROWS or status == 404:
            return NotFoundError(message, status=status, code=code)
        if status in (408, 429) or status >= 500:
            return TransientBackendError(message, status=status, code=code)
        return BackendError(message, status=status, code=code)

    def _table_url(self, table: str) -> str:
        return f"{self.settings.rest_url}/{table}"

    # ---------- datos ----------

    async def query(self, table: str, filters: Optional[Dict[str, FilterValue]] = None,
                    order: Optional[str] = None, limit: Optional[int] = None,
                    select: str = "*") -> List[Dict[str, Any]]:
        params = {"select": select}
        for column, value in (filters or {}).items():
            params[column] = encode_filter(value)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        rows = await self._request("GET", self._table_url(table), params=params)
        return list(rows or [])

    async def query_single(self, table: str, filters: Dict[str, FilterValue]) -> Dict[str, Any]:
        rows = await self.query(table, filters, limit=2)
        if not rows:
            raise NotFoundError(f"No {table} row matches {filters}", status=406, code=NO_ROWS)
        if len(rows) > 1:
            raise BackendError(f"Expected a single {table} row, got several", status=406, code=NO_ROWS)
        return rows[0]

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request("POST", self._table_url(table), json_body=row, prefer="return=representation")
        if not rows:
            raise BackendError(f"Insert into {table} returned no row")
        return rows[0] if isinstance(rows, list) else rows

    async def update(self, table: str, entity_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request(
            "PATCH", self._table_url(table), params={"id": encode_filter(entity_id)},
            json_body=patch, prefer="return=representation",
        )
        if not rows:
            raise NotFoundError(f"No {table} row with id {entity_id}", status=404, code=NO_ROWS)
        return rows[0] if isinstance(rows, list) else rows

    async def delete(self, table: str, entity_id: str) -> None:
        await self._request("DELETE", self._table_url(table), params={"id": encode_filter(entity_id)})

    # ---------- realtime ----------

    async def open_channel(self, scope: Scope, on_event: EventHandler, on_state: StateHandler) -> RealtimeChannel:
        if self._socket is None:
            self._socket = RealtimeSocket(self.settings, access_token=self.access_token)
        return await self._socket.open_channel(scope, on_event, on_state)

    # ---------- auth ----------

    def _session_from(self, data: Dict[str, Any]) -> AuthSession:
        expires_at = None
        if data.get("expires_at"):
            expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
        elif data.get("expires_in"):
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
        return AuthSession(
            user_id=str(data["user"]["id"]),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
        )

    async def sign_in(self, email: str, password: str) -> AuthSession:
        data = await self._request(
            "POST", f"{self.settings.auth_url}/token", params={"grant_type": "password"},
            json_body={"email": email, "password": password},
            headers={"Authorization": f"Bearer {self.settings.backend_anon_key}"},
        )
        session = self._session_from(data)
        await self.set_access_token(session.access_token)
        return session

    async def refresh(self, refresh_token: str) -> AuthSession:
        data = await self._request(
            "POST", f"{self.settings.auth_url}/token", params={"grant_type": "refresh_token"},
            json_body={"refresh_token": refresh_token},
            headers={"Authorization": f"Bearer {self.settings.backend_anon_key}"},
        )
        session = self._session_from(data)
        await self.set_access_token(session.access_token)
        return session

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        return await self._request(
            "GET", f"{self.settings.auth_url}/user",
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def sign_out(self) -> None:
        if self.access_token:
            await self._request("POST", f"{self.settings.auth_url}/logout")
        self.access_token = None

    async def set_access_token(self, token: str) -> None:
        self.access_token = token
        if self._socket is not None:
            await self._socket.set_access_token(token)

    async def close(self) -> None:
        if self._socket is not None:
            await self._socket.close()
            self._socket = None
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

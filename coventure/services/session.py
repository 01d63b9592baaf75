"""Estado de sesión explícito, inyectado en el cliente y en el manager."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlmodel import Session

from coventure.core.security import TokenError, token_expires_at
from coventure.models.auth_session import StoredSession
from coventure.schemas.auth import AuthSession
from coventure.schemas.entity import as_utc, utcnow

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


class SessionStore:
    """Persistencia local de la sesión para restaurarla al arrancar."""

    def __init__(self, engine):
        self.engine = engine

    def load(self, user_id: str) -> Optional[AuthSession]:
        with Session(self.engine) as session:
            stored = session.get(StoredSession, user_id)
            if stored is None:
                return None
            return AuthSession(
                user_id=stored.user_id,
                access_token=stored.access_token,
                refresh_token=stored.refresh_token,
                expires_at=as_utc(stored.expires_at),
            )

    def save(self, auth: AuthSession) -> None:
        with Session(self.engine) as session:
            stored = session.get(StoredSession, auth.user_id) or StoredSession(user_id=auth.user_id, access_token=auth.access_token)
            stored.access_token = auth.access_token
            stored.refresh_token = auth.refresh_token
            stored.expires_at = auth.expires_at
            stored.updated_at = utcnow()
            session.add(stored)
            session.commit()

    def delete(self, user_id: str) -> None:
        with Session(self.engine) as session:
            stored = session.get(StoredSession, user_id)
            if stored is not None:
                session.delete(stored)
                session.commit()


class SessionState:
    def __init__(self, user_id: str, access_token: str, store: Optional[SessionStore] = None):
        self.user_id = user_id
        self.access_token = access_token
        self.refresh_token: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self._store = store
        self.active = False

    def init(self) -> "SessionState":
        """Restaura la sesión persistida (refresh token, expiración) si existe."""
        if self._store is not None:
            persisted = self._store.load(self.user_id)
            if persisted is not None:
                self.refresh_token = persisted.refresh_token
                if persisted.access_token == self.access_token:
                    self.expires_at = persisted.expires_at
        if self.expires_at is None:
            self._read_expiry()
        self.active = True
        return self

    def replace_access_token(self, access_token: str) -> None:
        """Token nuevo presentado por el navegador; la expiración sale de sus claims."""
        self.access_token = access_token
        self.expires_at = None
        self._read_expiry()

    def _read_expiry(self) -> None:
        if not self.access_token:
            return
        try:
            self.expires_at = token_expires_at(self.access_token)
        except TokenError:
            logger.debug("Access token for %s carries no readable expiry", self.user_id)

    def update(self, auth: AuthSession) -> None:
        self.access_token = auth.access_token
        self.refresh_token = auth.refresh_token or self.refresh_token
        self.expires_at = auth.expires_at
        if self._store is not None:
            self._store.save(AuthSession(
                user_id=self.user_id,
                access_token=self.access_token,
                refresh_token=self.refresh_token,
                expires_at=self.expires_at,
            ))

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None or self.refresh_token is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now <= REFRESH_MARGIN

    def teardown(self) -> None:
        self.active = False
        if self._store is not None:
            self._store.delete(self.user_id)
        self.access_token = ""
        self.refresh_token = None
        self.expires_at = None
        logger.info("Session cleared for user %s", self.user_id)

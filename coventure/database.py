from sqlmodel import create_engine
from sqlalchemy.pool import StaticPool

from coventure.core.config import get_settings
from coventure.core.errors import ConfigurationError
from coventure.models.auth_session import StoredSession
from coventure.models.chat_message import ChatMessage
from coventure.models.chat_room import ChatRoom
from coventure.models.profile import Profile
from coventure.models.project import Project
from coventure.models.project_application import ProjectApplication
from coventure.models.project_member import ProjectMember

# Tablas que viven en el backend; la de sesiones es solo local
BACKEND_TABLES = [
    Profile.__table__,
    Project.__table__,
    ProjectApplication.__table__,
    ProjectMember.__table__,
    ChatRoom.__table__,
    ChatMessage.__table__,
]


def make_engine(url: str, echo: bool = False):
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo)


settings = get_settings()
session_engine = make_engine(settings.session_store_url, echo=settings.sql_echo)


def init_session_store(engine=None):
    StoredSession.__table__.create(engine or session_engine, checkfirst=True)


def backend_engine():
    """Conexión directa a la base del backend, solo para migraciones y desarrollo."""
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is required to manage the backend schema")
    return make_engine(settings.database_url, echo=settings.sql_echo)

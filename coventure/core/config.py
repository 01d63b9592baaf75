from functools import lru_cache
from typing import List, Optional

from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings

from coventure.core.errors import ConfigurationError


class Settings(BaseSettings):
    backend_url: str
    backend_anon_key: str
    backend_jwt_secret: Optional[str] = None
    database_url: Optional[str] = None   # Postgres directo, solo para migraciones
    session_store_url: str = "sqlite:///./coventure_session.db"
    backend_cors_origins: str = "http://localhost:3000"
    http_timeout: float = 15.0
    realtime_max_retries: int = 3
    realtime_base_delay_ms: int = 1000
    realtime_max_delay_ms: int = 10000
    realtime_heartbeat_interval: float = 30.0
    chat_reconcile_window_seconds: float = 120.0
    project_status_policy: str = "manual"   # "manual" | "auto_at_capacity"
    log_level: str = "INFO"
    sql_echo: bool = False

    class Config:
        env_file = ".env"
        extra = "allow"

    @field_validator("backend_url", "backend_anon_key")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("project_status_policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        if value not in ("manual", "auto_at_capacity"):
            raise ValueError("must be 'manual' or 'auto_at_capacity'")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.backend_cors_origins.split(",") if origin.strip()]

    @property
    def rest_url(self) -> str:
        return self.backend_url.rstrip("/") + "/rest/v1"

    @property
    def auth_url(self) -> str:
        return self.backend_url.rstrip("/") + "/auth/v1"

    @property
    def realtime_url(self) -> str:
        base = self.backend_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/realtime/v1/websocket?apikey={self.backend_anon_key}&vsn=1.0.0"


def load_settings(**overrides) -> Settings:
    """Construye la configuración; la ausencia de URL o clave del backend es fatal."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        missing = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
        raise ConfigurationError(f"Invalid or missing backend configuration: {missing}") from exc


@lru_cache
def get_settings() -> Settings:
    return load_settings()

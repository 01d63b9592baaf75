from datetime import datetime, timezone
from typing import Optional

from jose import jwt, JWTError

from coventure.core.config import Settings

ALGORITHM = "HS256"
AUDIENCE = "authenticated"


class TokenError(Exception):
    pass


def decode_access_token(token: str, settings: Settings) -> dict:
    """Valida la firma del token del backend con el secreto JWT configurado."""
    try:
        return jwt.decode(token, settings.backend_jwt_secret, algorithms=[ALGORITHM], audience=AUDIENCE)
    except JWTError as exc:
        raise TokenError(str(exc)) from exc


def read_unverified_claims(token: str) -> dict:
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise TokenError(str(exc)) from exc


def token_expires_at(token: str) -> Optional[datetime]:
    exp = read_unverified_claims(token).get("exp")
    if exp is None:
        return None
    return datetime.fromtimestamp(int(exp), tz=timezone.utc)


def create_access_token(user_id: str, secret: str, expires_in: int = 3600) -> str:
    # Solo para desarrollo y tests; en producción los tokens los emite el backend
    now = int(datetime.now(timezone.utc).timestamp())
    claims = {"sub": user_id, "aud": AUDIENCE, "role": "authenticated", "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)

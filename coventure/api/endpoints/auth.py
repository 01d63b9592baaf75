import logging

from fastapi import APIRouter, HTTPException, status, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer

from coventure.core.config import get_settings
from coventure.core.errors import BackendError, TransientBackendError
from coventure.core.security import TokenError, decode_access_token
from coventure.database import session_engine
from coventure.schemas.auth import CurrentUser, Token, UserRead
from coventure.services.backend_client import BackendClient
from coventure.services.session import SessionState, SessionStore
from coventure.services.workspace import Workspace, WorkspaceRegistry

logger = logging.getLogger(__name__)

router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")
settings = get_settings()
registry = WorkspaceRegistry(settings, session_store=SessionStore(session_engine))


def get_registry() -> WorkspaceRegistry:
    return registry


async def get_auth_client():
    client = BackendClient(settings)
    try:
        yield client
    finally:
        await client.close()


async def authenticate(token: str, client: BackendClient) -> CurrentUser:
    """Valida el token con el secreto JWT si está configurado; si no, preguntando al backend."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if settings.backend_jwt_secret:
        try:
            claims = decode_access_token(token, settings)
        except TokenError:
            raise credentials_exception
        user_id, email = claims.get("sub"), claims.get("email")
    else:
        try:
            user = await client.get_user(token)
        except TransientBackendError:
            raise
        except BackendError:
            raise credentials_exception
        user_id, email = user.get("id"), user.get("email")
    if not user_id:
        raise credentials_exception
    return CurrentUser(user_id=str(user_id), access_token=token, email=email)


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    client: BackendClient = Depends(get_auth_client),
) -> CurrentUser:
    return await authenticate(token, client)


async def get_workspace(
    current_user: CurrentUser = Depends(get_current_user),
    workspaces: WorkspaceRegistry = Depends(get_registry),
) -> Workspace:
    return await workspaces.get(current_user)


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    client: BackendClient = Depends(get_auth_client),
    workspaces: WorkspaceRegistry = Depends(get_registry),
):
    try:
        auth = await client.sign_in(form_data.username, form_data.password)
    except TransientBackendError:
        raise
    except BackendError as exc:
        logger.info("Login rejected for %s: %s", form_data.username, exc)
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    SessionState(auth.user_id, auth.access_token, store=workspaces.session_store).init().update(auth)
    logger.info("User %s signed in", auth.user_id)
    return Token(access_token=auth.access_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    current_user: CurrentUser = Depends(get_current_user),
    workspaces: WorkspaceRegistry = Depends(get_registry),
):
    # crea el workspace si no existía para cerrar también la sesión persistida
    await workspaces.get(current_user)
    await workspaces.remove(current_user.user_id)
    logger.info("User %s signed out", current_user.user_id)


@router.get("/me", response_model=UserRead)
async def me(current_user: CurrentUser = Depends(get_current_user)):
    return UserRead(user_id=current_user.user_id, email=current_user.email)

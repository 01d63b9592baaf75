import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coventure.api.endpoints import auth
from coventure.api.endpoints import profiles
from coventure.api.endpoints import projects
from coventure.api.endpoints import applications
from coventure.api.endpoints import chat
from coventure.api.endpoints import live
from coventure.core.config import get_settings
from coventure.core.errors import (
    BackendError,
    ClientValidationError,
    ConflictError,
    CoVentureError,
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ProfileNotFound,
    TransientBackendError,
)
from coventure.database import init_session_store

logger = logging.getLogger(__name__)

settings = get_settings()

# orden relevante: las subclases antes que sus bases
ERROR_STATUS = [
    (ClientValidationError, 422),
    (ConflictError, 409),
    (InvalidTransition, 409),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (TransientBackendError, 503),
    (BackendError, 502),
]


def status_for(exc: CoVentureError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_session_store()
    logger.info("CoVenture API started against %s", settings.backend_url)
    yield
    await auth.registry.close_all()


app = FastAPI(title="CoVenture", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CoVentureError)
async def coventure_error_handler(request: Request, exc: CoVentureError):
    code = status_for(exc)
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    body = {"detail": str(exc)}
    if isinstance(exc, ProfileNotFound):
        body["redirect"] = exc.redirect
    return JSONResponse(status_code=code, content=body)


app.include_router(auth.router, prefix="/auth", tags=["auth"])
app.include_router(profiles.router, prefix="/profiles", tags=["profiles"])
app.include_router(projects.router, prefix="/projects", tags=["projects"])
app.include_router(applications.router, prefix="/applications", tags=["applications"])
app.include_router(chat.router, prefix="/chat", tags=["chat"])
app.include_router(live.router, tags=["live"])

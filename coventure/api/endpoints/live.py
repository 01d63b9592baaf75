"""Estado de las suscripciones y reenvío de cambios al navegador por websocket."""
import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from coventure.api.endpoints.auth import authenticate, get_registry, get_workspace, settings
from coventure.core.errors import TransientBackendError
from coventure.services.backend_client import BackendClient
from coventure.services.workspace import Workspace, WorkspaceRegistry

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/live/status")
async def live_status(workspace: Workspace = Depends(get_workspace)):
    return workspace.status()


@router.post("/live/refresh")
async def refresh_live_updates(workspace: Workspace = Depends(get_workspace)):
    await workspace.refresh_live_updates()
    return workspace.status()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def forward_updates(websocket, queue: asyncio.Queue, disconnected: asyncio.Task) -> None:
    """Reenvía la cola hasta que el navegador se desconecta."""
    while not disconnected.done():
        getter = asyncio.create_task(queue.get())
        await asyncio.wait({getter, disconnected}, return_when=asyncio.FIRST_COMPLETED)
        if disconnected.done():
            getter.cancel()
            return
        await websocket.send_json(getter.result())


@router.websocket("/live")
async def live_updates(
    websocket: WebSocket,
    token: str = Query(...),
    workspaces: WorkspaceRegistry = Depends(get_registry),
):
    client = BackendClient(settings)
    try:
        user = await authenticate(token, client)
    except (HTTPException, TransientBackendError) as exc:
        logger.info("Rejected live connection: %s", exc)
        await websocket.close(code=1008)
        return
    finally:
        await client.close()

    workspace = await workspaces.get(user)
    await websocket.accept()
    queue = workspace.open_live_feed()
    disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        await websocket.send_json({"type": "status", **workspace.status()})
        await forward_updates(websocket, queue, disconnected)
    finally:
        disconnected.cancel()
        workspace.close_live_feed(queue)
        logger.info("Live connection closed for %s", user.user_id)

from typing import List

from fastapi import APIRouter, Depends, status

from coventure.api.endpoints.auth import get_workspace
from coventure.schemas.chat import ChatMessageCreate, ChatMessageRead, ChatRoomCreate, ChatRoomRead
from coventure.services.workspace import Workspace

router = APIRouter()


@router.post("/rooms", response_model=ChatRoomRead)
async def get_or_create_room(
    room_in: ChatRoomCreate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.chat.get_or_create_room(room_in.project_id, room_in.application_id)


@router.post("/rooms/{room_id}/subscription", response_model=List[ChatMessageRead])
async def open_room(room_id: str, workspace: Workspace = Depends(get_workspace)):
    return await workspace.chat.open_room(room_id)


@router.delete("/rooms/{room_id}/subscription", status_code=status.HTTP_204_NO_CONTENT)
async def close_room(room_id: str, workspace: Workspace = Depends(get_workspace)):
    if workspace.chat.current_room == room_id:
        await workspace.chat.close_room()


@router.get("/rooms/{room_id}/messages", response_model=List[ChatMessageRead])
async def list_messages(room_id: str, workspace: Workspace = Depends(get_workspace)):
    if workspace.chat.current_room == room_id:
        return workspace.chat.messages(room_id)
    return await workspace.chat.fetch_messages(room_id)


@router.post("/rooms/{room_id}/messages", response_model=ChatMessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: str,
    message_in: ChatMessageCreate,
    workspace: Workspace = Depends(get_workspace),
):
    return await workspace.chat.send_message(room_id, message_in.content)

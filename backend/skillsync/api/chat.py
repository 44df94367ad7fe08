"""FastAPI endpoints for direct-message chats."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from skillsync.domain.chat.schemas import ChatRoomOut, MessageOut, PostMessageRequest
from skillsync.domain.chat.service import get_direct_room, list_direct_rooms, open_direct_room, send_direct_message
from skillsync.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.get("", response_model=List[ChatRoomOut])
async def list_chats_endpoint(auth_user: AuthenticatedUser = Depends(get_current_user)) -> List[ChatRoomOut]:
	return await list_direct_rooms(auth_user)


@router.post("/user/{user_id}", response_model=ChatRoomOut)
async def open_chat_endpoint(
	user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ChatRoomOut:
	return await open_direct_room(auth_user, user_id)


@router.get("/{chat_id}", response_model=ChatRoomOut)
async def get_chat_endpoint(
	chat_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ChatRoomOut:
	return await get_direct_room(auth_user, chat_id)


@router.post("/{chat_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	chat_id: str,
	payload: PostMessageRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageOut:
	return await send_direct_message(auth_user, chat_id, payload.content)

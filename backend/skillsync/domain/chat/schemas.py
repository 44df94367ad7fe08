"""Pydantic schemas for chat payloads and REST responses."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import GLOBAL_ROOM, ChatMessage, ChatRoom


class SendMessagePayload(BaseModel):
	"""Body of the realtime ``message`` event."""

	model_config = ConfigDict(extra="ignore", populate_by_name=True)

	content: Optional[str] = None
	room: Optional[str] = GLOBAL_ROOM
	message_id: Optional[str] = Field(default=None, alias="messageId")


class RoomPayload(BaseModel):
	model_config = ConfigDict(extra="ignore")

	room: Optional[str] = None


class PostMessageRequest(BaseModel):
	content: str = Field(..., description="Message body; trimmed server-side")


class MessageUser(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	id: str = Field(..., alias="_id")
	name: str = ""
	profile_picture: str = Field(default="", alias="profilePicture")


class MessageOut(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	id: str = Field(..., alias="_id")
	room: str
	sender: MessageUser
	content: str
	timestamp: datetime

	@classmethod
	def from_model(cls, message: ChatMessage) -> "MessageOut":
		return cls(
			id=message.id,
			room=message.room_id,
			sender=MessageUser(
				id=message.sender_id,
				name=message.sender_name,
				profile_picture=message.sender_avatar,
			),
			content=message.content,
			timestamp=message.created_at,
		)


class ChatRoomOut(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	id: str = Field(..., alias="_id")
	kind: str
	participants: List[MessageUser]
	messages: List[MessageOut] = Field(default_factory=list)
	last_message: Optional[datetime] = Field(default=None, alias="lastMessage")
	created_at: Optional[datetime] = Field(default=None, alias="createdAt")

	@classmethod
	def from_model(cls, room: ChatRoom, people: Dict[str, MessageUser]) -> "ChatRoomOut":
		participants = [people.get(uid) or MessageUser(id=uid) for uid in room.participants]
		return cls(
			id=room.room_id,
			kind=room.kind,
			participants=participants,
			messages=[MessageOut.from_model(msg) for msg in room.messages],
			last_message=room.last_message_at,
			created_at=room.created_at,
		)

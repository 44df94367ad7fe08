"""Validation and access rules for chat sends."""

from __future__ import annotations

from typing import Optional, Tuple

from skillsync.domain.chat.models import GLOBAL_ROOM, DirectRoomKey
from skillsync.settings import settings


class ChatPolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code


class ChatPersistenceError(RuntimeError):
	"""The chat store could not complete a read or write."""


def normalise_content(raw: object, *, max_length: int | None = None) -> str:
	limit = settings.chat_message_max_length if max_length is None else max_length
	content = raw.strip() if isinstance(raw, str) else ""
	if not content:
		raise ChatPolicyError("empty_content", message="Message content is required")
	if len(content) > limit:
		raise ChatPolicyError("content_too_long", message=f"Message content exceeds {limit} characters")
	return content


def require_message_id(raw: object) -> str:
	message_id = str(raw).strip() if raw is not None else ""
	if not message_id:
		raise ChatPolicyError("missing_message_id", message="messageId is required")
	return message_id


def resolve_room(raw: object, user_id: str) -> Tuple[str, Optional[DirectRoomKey]]:
	"""Return the canonical room id the user may post to or join."""
	room = str(raw).strip() if raw else GLOBAL_ROOM
	if room == GLOBAL_ROOM:
		return GLOBAL_ROOM, None
	key = DirectRoomKey.parse(room)
	if key is None:
		raise ChatPolicyError("unknown_room", status_code=404, message="Chat not found")
	if not key.includes(user_id):
		raise ChatPolicyError("room_forbidden", status_code=403, message="Not a participant of this chat")
	return key.room_id, key

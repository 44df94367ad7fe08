"""Domain models for realtime chat."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

GLOBAL_ROOM = "global"
DIRECT_PREFIX = "dm"
ROOM_ID_SEPARATOR = ":"

ROOM_KIND_GLOBAL = "global"
ROOM_KIND_DIRECT = "direct"


@dataclass(slots=True, frozen=True)
class DirectRoomKey:
	"""Canonical representation of a 1:1 chat room.

	The room id joins both user ids with ``:``, so user ids must not contain it.
	"""

	user_a: str
	user_b: str

	@classmethod
	def from_participants(cls, user_one: str, user_two: str) -> "DirectRoomKey":
		if ROOM_ID_SEPARATOR in str(user_one) or ROOM_ID_SEPARATOR in str(user_two):
			raise ValueError("user ids must not contain ':'")
		ordered = tuple(sorted((str(user_one), str(user_two))))
		return cls(user_a=ordered[0], user_b=ordered[1])

	@classmethod
	def parse(cls, room_id: str) -> Optional["DirectRoomKey"]:
		parts = str(room_id or "").split(ROOM_ID_SEPARATOR)
		if len(parts) != 3 or parts[0] != DIRECT_PREFIX or not parts[1] or not parts[2]:
			return None
		if parts[1] == parts[2]:
			return None
		return cls.from_participants(parts[1], parts[2])

	@property
	def room_id(self) -> str:
		return ROOM_ID_SEPARATOR.join((DIRECT_PREFIX, self.user_a, self.user_b))

	def participants(self) -> Tuple[str, str]:
		return (self.user_a, self.user_b)

	def includes(self, user_id: str) -> bool:
		return str(user_id) in (self.user_a, self.user_b)

	def peer_of(self, user_id: str) -> str:
		return self.user_b if str(user_id) == self.user_a else self.user_a


def room_kind(room_id: str) -> str:
	return ROOM_KIND_GLOBAL if room_id == GLOBAL_ROOM else ROOM_KIND_DIRECT


@dataclass(slots=True)
class MessageDraft:
	"""A validated send request waiting for a server-assigned id."""

	sender_id: str
	sender_name: str
	sender_avatar: str
	content: str
	created_at: datetime


@dataclass(slots=True)
class ChatMessage:
	id: str
	room_id: str
	sender_id: str
	sender_name: str
	sender_avatar: str
	content: str
	created_at: datetime

	@classmethod
	def from_draft(cls, message_id: str, room_id: str, draft: MessageDraft) -> "ChatMessage":
		return cls(
			id=message_id,
			room_id=room_id,
			sender_id=draft.sender_id,
			sender_name=draft.sender_name,
			sender_avatar=draft.sender_avatar,
			content=draft.content,
			created_at=draft.created_at,
		)

	def to_broadcast(self) -> dict:
		"""Wire shape of the realtime ``message`` event."""
		return {
			"id": self.id,
			"room": self.room_id,
			"user": {
				"_id": self.sender_id,
				"name": self.sender_name,
				"profilePicture": self.sender_avatar,
			},
			"content": self.content,
			"timestamp": self.created_at.isoformat(),
		}


@dataclass(slots=True)
class ChatRoom:
	room_id: str
	kind: str
	participants: Tuple[str, ...]
	created_at: datetime
	last_message_at: Optional[datetime] = None
	messages: Tuple[ChatMessage, ...] = field(default_factory=tuple)

	@property
	def is_direct(self) -> bool:
		return self.kind == ROOM_KIND_DIRECT

	def is_participant(self, user_id: str) -> bool:
		return str(user_id) in self.participants

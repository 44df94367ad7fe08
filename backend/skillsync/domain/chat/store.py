"""Persisted chat store: rooms, participants and append-only message history."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import ulid

from skillsync.domain.chat.models import (
	GLOBAL_ROOM,
	ChatMessage,
	ChatRoom,
	DirectRoomKey,
	MessageDraft,
	room_kind,
)
from skillsync.domain.chat.policy import ChatPolicyError
from skillsync.infra.postgres import get_pool

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_rooms (
	room_id TEXT PRIMARY KEY,
	kind TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	last_message_at TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS chat_rooms_last_message_idx ON chat_rooms (last_message_at DESC);
CREATE TABLE IF NOT EXISTS chat_room_participants (
	room_id TEXT NOT NULL REFERENCES chat_rooms (room_id),
	user_id TEXT NOT NULL,
	joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	PRIMARY KEY (room_id, user_id)
);
CREATE INDEX IF NOT EXISTS chat_room_participants_user_idx ON chat_room_participants (user_id);
CREATE TABLE IF NOT EXISTS chat_messages (
	seq BIGSERIAL PRIMARY KEY,
	id TEXT NOT NULL UNIQUE,
	room_id TEXT NOT NULL REFERENCES chat_rooms (room_id),
	sender_id TEXT NOT NULL,
	sender_name TEXT NOT NULL DEFAULT '',
	sender_avatar TEXT NOT NULL DEFAULT '',
	content TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS chat_messages_room_seq_idx ON chat_messages (room_id, seq DESC);
"""


def _initial_participants(room_id: str, participants: Iterable[str]) -> tuple[str, ...]:
	key = DirectRoomKey.parse(room_id)
	if key is not None:
		return key.participants()
	return tuple(dict.fromkeys(str(p) for p in participants))


class _InMemoryStore:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rooms: dict[str, ChatRoom] = {}
		self.messages: dict[str, List[ChatMessage]] = {}

	def _ensure(self, room_id: str, participants: Iterable[str]) -> ChatRoom:
		room = self.rooms.get(room_id)
		if room is None:
			room = ChatRoom(
				room_id=room_id,
				kind=room_kind(room_id),
				participants=_initial_participants(room_id, participants),
				created_at=datetime.now(timezone.utc),
			)
			self.rooms[room_id] = room
			self.messages[room_id] = []
		return room

	async def find_or_create_room(self, room_id: str, participants: Iterable[str]) -> ChatRoom:
		async with self._lock:
			return replace(self._ensure(room_id, participants))

	async def get_room(self, room_id: str) -> Optional[ChatRoom]:
		async with self._lock:
			room = self.rooms.get(room_id)
			return replace(room) if room else None

	async def append_message(self, room_id: str, draft: MessageDraft) -> ChatMessage:
		async with self._lock:
			room = self._ensure(room_id, (draft.sender_id,))
			if room_id == GLOBAL_ROOM and draft.sender_id not in room.participants:
				room.participants = room.participants + (draft.sender_id,)
			message = ChatMessage.from_draft(str(ulid.new()), room_id, draft)
			self.messages[room_id].append(message)
			room.last_message_at = message.created_at
			return message

	async def recent_messages(self, room_id: str, limit: Optional[int]) -> List[ChatMessage]:
		async with self._lock:
			messages = self.messages.get(room_id, [])
			if limit is None:
				return list(messages)
			if limit <= 0:
				return []
			return list(messages[-limit:])

	async def rooms_for_user(self, user_id: str) -> List[ChatRoom]:
		async with self._lock:
			rooms = [
				replace(room)
				for room in self.rooms.values()
				if room.is_direct and room.is_participant(user_id)
			]
		epoch = datetime.min.replace(tzinfo=timezone.utc)
		rooms.sort(key=lambda r: r.last_message_at or r.created_at or epoch, reverse=True)
		return rooms


_MEMORY_STORE = _InMemoryStore()


def _row_to_message(row) -> ChatMessage:
	return ChatMessage(
		id=str(row["id"]),
		room_id=str(row["room_id"]),
		sender_id=str(row["sender_id"]),
		sender_name=row["sender_name"] or "",
		sender_avatar=row["sender_avatar"] or "",
		content=row["content"],
		created_at=row["created_at"],
	)


def _row_to_room(row, participants: Sequence[str]) -> ChatRoom:
	return ChatRoom(
		room_id=str(row["room_id"]),
		kind=row["kind"],
		participants=tuple(str(p) for p in participants),
		created_at=row["created_at"],
		last_message_at=row["last_message_at"],
	)


class ChatStore:
	"""Repository backed by asyncpg with an in-memory fallback."""

	def __init__(self) -> None:
		self._pool_checked = False
		self._pool = None

	async def _pool_or_none(self):
		if self._pool_checked:
			return self._pool
		self._pool_checked = True
		try:
			pool = await get_pool()
		except AssertionError:
			pool = None
		except Exception:
			pool = None
		self._pool = pool
		return pool

	async def ensure_schema(self) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return False
		async with pool.acquire() as conn:
			await conn.execute(SCHEMA_SQL)
		return True

	async def _insert_room(self, conn, room_id: str, participants: Iterable[str]) -> None:
		await conn.execute(
			"""
			INSERT INTO chat_rooms (room_id, kind)
			VALUES ($1, $2)
			ON CONFLICT (room_id) DO NOTHING
			""",
			room_id,
			room_kind(room_id),
		)
		# direct rooms are fixed to their pair; the global room accumulates every poster
		members = _initial_participants(room_id, participants)
		if members:
			await conn.executemany(
				"""
				INSERT INTO chat_room_participants (room_id, user_id)
				VALUES ($1, $2)
				ON CONFLICT (room_id, user_id) DO NOTHING
				""",
				[(room_id, member) for member in members],
			)

	async def _load_room(self, conn, room_id: str) -> Optional[ChatRoom]:
		row = await conn.fetchrow(
			"SELECT room_id, kind, created_at, last_message_at FROM chat_rooms WHERE room_id = $1",
			room_id,
		)
		if not row:
			return None
		members = await conn.fetch(
			"SELECT user_id FROM chat_room_participants WHERE room_id = $1 ORDER BY joined_at ASC",
			room_id,
		)
		return _row_to_room(row, [m["user_id"] for m in members])

	async def find_or_create_room(self, room_id: str, participants: Iterable[str] = ()) -> ChatRoom:
		"""Return the room, creating it when this is its first use."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.find_or_create_room(room_id, participants)
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._insert_room(conn, room_id, participants)
				room = await self._load_room(conn, room_id)
		assert room is not None
		return room

	async def find_or_create_direct_room(self, user_a: str, user_b: str) -> ChatRoom:
		if str(user_a) == str(user_b):
			raise ChatPolicyError("cannot_dm_self", message="Cannot open a chat with yourself")
		key = DirectRoomKey.from_participants(user_a, user_b)
		return await self.find_or_create_room(key.room_id, key.participants())

	async def get_room(self, room_id: str) -> Optional[ChatRoom]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.get_room(room_id)
		async with pool.acquire() as conn:
			return await self._load_room(conn, room_id)

	async def append_message(self, room_id: str, draft: MessageDraft) -> ChatMessage:
		"""Append to the room's history, creating the room if absent."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.append_message(room_id, draft)
		message = ChatMessage.from_draft(str(ulid.new()), room_id, draft)
		async with pool.acquire() as conn:
			async with conn.transaction():
				await self._insert_room(conn, room_id, (draft.sender_id,))
				await conn.execute(
					"""
					INSERT INTO chat_messages (id, room_id, sender_id, sender_name, sender_avatar, content, created_at)
					VALUES ($1, $2, $3, $4, $5, $6, $7)
					""",
					message.id,
					room_id,
					message.sender_id,
					message.sender_name,
					message.sender_avatar,
					message.content,
					message.created_at,
				)
				await conn.execute(
					"UPDATE chat_rooms SET last_message_at = $2 WHERE room_id = $1",
					room_id,
					message.created_at,
				)
		return message

	async def recent_messages(self, room_id: str, limit: Optional[int]) -> List[ChatMessage]:
		"""Most recent ``limit`` messages, oldest first. ``None`` returns the full history."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.recent_messages(room_id, limit)
		if limit is not None and limit <= 0:
			return []
		async with pool.acquire() as conn:
			if limit is None:
				rows = await conn.fetch(
					"""
					SELECT id, room_id, sender_id, sender_name, sender_avatar, content, created_at
					FROM chat_messages
					WHERE room_id = $1
					ORDER BY seq ASC
					""",
					room_id,
				)
				return [_row_to_message(row) for row in rows]
			rows = await conn.fetch(
				"""
				SELECT id, room_id, sender_id, sender_name, sender_avatar, content, created_at
				FROM chat_messages
				WHERE room_id = $1
				ORDER BY seq DESC
				LIMIT $2
				""",
				room_id,
				limit,
			)
		return [_row_to_message(row) for row in reversed(rows)]

	async def find_rooms_for_user(self, user_id: str) -> List[ChatRoom]:
		"""Direct rooms the user participates in, most recently active first."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_STORE.rooms_for_user(str(user_id))
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"""
				SELECT r.room_id, r.kind, r.created_at, r.last_message_at,
					ARRAY(
						SELECT p2.user_id FROM chat_room_participants p2
						WHERE p2.room_id = r.room_id ORDER BY p2.joined_at ASC
					) AS participants
				FROM chat_rooms r
				JOIN chat_room_participants p ON p.room_id = r.room_id
				WHERE p.user_id = $1 AND r.kind = 'direct'
				ORDER BY COALESCE(r.last_message_at, r.created_at) DESC
				""",
				str(user_id),
			)
			return [_row_to_room(row, row["participants"] or []) for row in rows]


async def reset_chat_store() -> None:
	"""Test helper to clear the in-memory chat store."""
	async with _MEMORY_STORE._lock:  # type: ignore[attr-defined]
		_MEMORY_STORE.rooms.clear()
		_MEMORY_STORE.messages.clear()

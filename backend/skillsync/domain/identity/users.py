"""User directory consumed by the chat core.

Profiles are owned by the auth/profile subsystem. Chat only reads identity
fields, writes presence, and bumps the unread counter.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

from skillsync.infra.postgres import get_pool

USERS_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
	id TEXT PRIMARY KEY,
	name TEXT NOT NULL DEFAULT '',
	profile_picture TEXT NOT NULL DEFAULT '',
	is_online BOOLEAN NOT NULL DEFAULT FALSE,
	last_seen TIMESTAMPTZ,
	chat_notifications BOOLEAN NOT NULL DEFAULT TRUE,
	unread_messages INTEGER NOT NULL DEFAULT 0
);
"""


@dataclass(slots=True)
class UserProfile:
	id: str
	name: str
	profile_picture: str = ""
	is_online: bool = False
	last_seen: Optional[datetime] = None
	notifications: bool = True
	unread_messages: int = 0

	def public(self) -> dict:
		return {"_id": self.id, "name": self.name, "profilePicture": self.profile_picture}


class _InMemoryUsers:
	"""Fallback store used in tests when Postgres is unavailable."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.users: dict[str, UserProfile] = {}

	async def get(self, user_id: str) -> Optional[UserProfile]:
		async with self._lock:
			user = self.users.get(user_id)
			return replace(user) if user else None

	async def upsert(self, user: UserProfile) -> UserProfile:
		async with self._lock:
			self.users[user.id] = replace(user)
			return replace(user)

	async def set_presence(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> bool:
		async with self._lock:
			user = self.users.get(user_id)
			if user is None:
				return False
			user.is_online = is_online
			if last_seen is not None:
				user.last_seen = last_seen
			return True

	async def notified_ids(self, exclude: Iterable[str]) -> List[str]:
		excluded = set(exclude)
		async with self._lock:
			return [uid for uid, user in self.users.items() if user.notifications and uid not in excluded]

	async def increment_unread(self, user_ids: Iterable[str]) -> None:
		async with self._lock:
			for user_id in user_ids:
				user = self.users.get(user_id)
				if user is not None:
					user.unread_messages += 1


_MEMORY_USERS = _InMemoryUsers()


def _row_to_user(row) -> UserProfile:
	return UserProfile(
		id=str(row["id"]),
		name=row["name"] or "",
		profile_picture=row["profile_picture"] or "",
		is_online=bool(row["is_online"]),
		last_seen=row["last_seen"],
		notifications=bool(row["chat_notifications"]),
		unread_messages=int(row["unread_messages"] or 0),
	)


class UserDirectory:
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
			await conn.execute(USERS_SCHEMA_SQL)
		return True

	async def get_user(self, user_id: str) -> Optional[UserProfile]:
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_USERS.get(str(user_id))
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				SELECT id, name, profile_picture, is_online, last_seen, chat_notifications, unread_messages
				FROM users
				WHERE id = $1
				""",
				str(user_id),
			)
			return _row_to_user(row) if row else None

	async def upsert_user(self, user: UserProfile) -> UserProfile:
		if ":" in user.id:
			# direct room ids are joined with ':'
			raise ValueError("user ids must not contain ':'")
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_USERS.upsert(user)
		async with pool.acquire() as conn:
			row = await conn.fetchrow(
				"""
				INSERT INTO users (id, name, profile_picture, is_online, last_seen, chat_notifications, unread_messages)
				VALUES ($1, $2, $3, $4, $5, $6, $7)
				ON CONFLICT (id) DO UPDATE SET
					name = EXCLUDED.name,
					profile_picture = EXCLUDED.profile_picture,
					chat_notifications = EXCLUDED.chat_notifications
				RETURNING id, name, profile_picture, is_online, last_seen, chat_notifications, unread_messages
				""",
				user.id,
				user.name,
				user.profile_picture,
				user.is_online,
				user.last_seen,
				user.notifications,
				user.unread_messages,
			)
			return _row_to_user(row)

	async def set_presence(self, user_id: str, *, is_online: bool, last_seen: Optional[datetime] = None) -> bool:
		"""Write the presence flag. Returns False when the user does not exist."""
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_USERS.set_presence(str(user_id), is_online, last_seen)
		async with pool.acquire() as conn:
			result = await conn.execute(
				"""
				UPDATE users
				SET is_online = $2, last_seen = COALESCE($3, last_seen)
				WHERE id = $1
				""",
				str(user_id),
				is_online,
				last_seen,
			)
			return not result.endswith(" 0")

	async def list_notified_user_ids(self, *, exclude: Iterable[str] = ()) -> List[str]:
		excluded = [str(uid) for uid in exclude]
		pool = await self._pool_or_none()
		if pool is None:
			return await _MEMORY_USERS.notified_ids(excluded)
		async with pool.acquire() as conn:
			rows = await conn.fetch(
				"SELECT id FROM users WHERE chat_notifications AND NOT (id = ANY($1::text[]))",
				excluded,
			)
			return [str(row["id"]) for row in rows]

	async def increment_unread(self, user_ids: Iterable[str]) -> None:
		targets = [str(uid) for uid in user_ids]
		if not targets:
			return
		pool = await self._pool_or_none()
		if pool is None:
			await _MEMORY_USERS.increment_unread(targets)
			return
		async with pool.acquire() as conn:
			await conn.execute(
				"UPDATE users SET unread_messages = unread_messages + 1 WHERE id = ANY($1::text[])",
				targets,
			)


async def reset_user_store() -> None:
	"""Test helper to clear the in-memory user directory."""
	async with _MEMORY_USERS._lock:  # type: ignore[attr-defined]
		_MEMORY_USERS.users.clear()

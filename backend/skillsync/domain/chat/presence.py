"""Presence tracking driven by realtime connect/disconnect."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from skillsync.domain.identity.users import UserDirectory
from skillsync.obs import metrics as obs_metrics


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(slots=True)
class Presence:
	user_id: str
	is_online: bool
	last_seen: Optional[datetime]

	def to_dict(self) -> dict:
		return {
			"userId": self.user_id,
			"isOnline": self.is_online,
			"lastSeen": self.last_seen.isoformat() if self.last_seen else None,
		}


class PresenceTracker:
	def __init__(self, directory: UserDirectory | None = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self._directory = directory if directory is not None else UserDirectory()
		self._clock = clock

	async def mark_online(self, user_id: str) -> None:
		await self._directory.set_presence(user_id, is_online=True)
		obs_metrics.inc_presence("online")

	async def mark_offline(self, user_id: str, at: Optional[datetime] = None) -> datetime:
		seen_at = at or self._clock()
		await self._directory.set_presence(user_id, is_online=False, last_seen=seen_at)
		obs_metrics.inc_presence("offline")
		return seen_at

	async def get_presence(self, user_id: str) -> Optional[Presence]:
		profile = await self._directory.get_user(user_id)
		if profile is None:
			return None
		return Presence(user_id=profile.id, is_online=profile.is_online, last_seen=profile.last_seen)

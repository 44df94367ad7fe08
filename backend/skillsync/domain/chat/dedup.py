"""Short-lived dedup window keyed by client-generated message ids.

The window collapses rapid re-emission of the same send (double clicks,
reconnect-and-resend races). It is not an exactly-once ledger: entries
expire after a few seconds and the in-process window is lost on restart.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Optional, Protocol

from skillsync.infra.redis import redis_client
from skillsync.settings import settings


class MessageDedup(Protocol):
	async def seen(self, key: str) -> bool:
		...

	async def register(self, key: str, ttl: Optional[float] = None) -> None:
		...

	async def claim(self, key: str) -> bool:
		...

	async def release(self, key: str) -> None:
		...

	async def close(self) -> None:
		...


class DedupWindow:
	"""In-process TTL set owned by a single gateway instance.

	Only the owning event loop mutates it, so no locking is needed.
	"""

	def __init__(self, ttl: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
		self._ttl = float(settings.chat_dedup_ttl_seconds if ttl is None else ttl)
		self._clock = clock
		self._deadlines: Dict[str, float] = {}
		self._timers: Dict[str, asyncio.TimerHandle] = {}

	@property
	def ttl(self) -> float:
		return self._ttl

	def __len__(self) -> int:
		return len(self._deadlines)

	def __contains__(self, key: object) -> bool:
		deadline = self._deadlines.get(str(key))
		return deadline is not None and deadline > self._clock()

	async def seen(self, key: str) -> bool:
		deadline = self._deadlines.get(key)
		if deadline is None:
			return False
		if deadline <= self._clock():
			self._evict(key)
			return False
		return True

	async def register(self, key: str, ttl: Optional[float] = None) -> None:
		self._insert(key, self._ttl if ttl is None else float(ttl))

	async def claim(self, key: str) -> bool:
		"""Register ``key`` unless it is already live. False means duplicate."""
		if await self.seen(key):
			return False
		self._insert(key, self._ttl)
		return True

	async def release(self, key: str) -> None:
		self._evict(key)

	async def close(self) -> None:
		for handle in self._timers.values():
			handle.cancel()
		self._timers.clear()
		self._deadlines.clear()

	def _insert(self, key: str, ttl: float) -> None:
		self._cancel_timer(key)
		self._deadlines[key] = self._clock() + ttl
		try:
			loop = asyncio.get_running_loop()
		except RuntimeError:
			# no loop: expiry is enforced lazily by seen()
			return
		self._timers[key] = loop.call_later(ttl, self._evict, key)

	def _cancel_timer(self, key: str) -> None:
		handle = self._timers.pop(key, None)
		if handle is not None:
			handle.cancel()

	def _evict(self, key: str) -> None:
		self._cancel_timer(key)
		self._deadlines.pop(key, None)


class RedisDedupWindow:
	"""Shared expiring key store for gateways running in several processes."""

	def __init__(self, ttl: Optional[float] = None, *, prefix: str = "chat:dedup") -> None:
		self._ttl = float(settings.chat_dedup_ttl_seconds if ttl is None else ttl)
		self._prefix = prefix

	@property
	def ttl(self) -> float:
		return self._ttl

	def _key(self, key: str) -> str:
		return f"{self._prefix}:{key}"

	def _px(self, ttl: Optional[float]) -> int:
		return max(1, int((self._ttl if ttl is None else float(ttl)) * 1000))

	async def seen(self, key: str) -> bool:
		return bool(await redis_client.exists(self._key(key)))

	async def register(self, key: str, ttl: Optional[float] = None) -> None:
		await redis_client.set(self._key(key), "1", px=self._px(ttl))

	async def claim(self, key: str) -> bool:
		created = await redis_client.set(self._key(key), "1", nx=True, px=self._px(None))
		return bool(created)

	async def release(self, key: str) -> None:
		await redis_client.delete(self._key(key))

	async def close(self) -> None:
		return None


def build_dedup_window(backend: Optional[str] = None) -> MessageDedup:
	if (backend or settings.chat_dedup_backend) == "redis":
		return RedisDedupWindow()
	return DedupWindow()

"""Consumer-side chat adapter over ``socketio.AsyncClient``.

Incoming ``message`` broadcasts are the only signal that a send landed.
Each logical send gets a fresh ``messageId``; retries of the same action
reuse it so the server's dedup window can absorb them.
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import socketio
import ulid

logger = logging.getLogger(__name__)

GLOBAL_ROOM = "global"
RECONNECT_ATTEMPTS = 5
RECONNECT_DELAY_SECONDS = 1.0
RECONNECT_DELAY_MAX_SECONDS = 5.0
SEEN_WINDOW_SECONDS = 5.0

Callback = Callable[..., Union[None, Awaitable[None]]]
TokenProvider = Callable[[], Optional[str]]


def new_message_id() -> str:
	return str(ulid.new())


async def _invoke(callback: Optional[Callback], *args: Any) -> None:
	if callback is None:
		return
	result = callback(*args)
	if inspect.isawaitable(result):
		await result


class ChatClient:
	def __init__(
		self,
		*,
		token: Optional[str] = None,
		token_provider: Optional[TokenProvider] = None,
		on_message: Optional[Callback] = None,
		on_history: Optional[Callback] = None,
		on_error: Optional[Callback] = None,
		seen_window: float = SEEN_WINDOW_SECONDS,
		clock: Callable[[], float] = time.monotonic,
		sio: Optional[socketio.AsyncClient] = None,
	) -> None:
		self._token = token
		self._token_provider = token_provider
		self.on_message = on_message
		self.on_history = on_history
		self.on_error = on_error
		self._seen_window = seen_window
		self._clock = clock
		self._seen: Dict[str, float] = {}
		self._rooms: Set[str] = set()
		self.messages: List[dict] = []
		self._sio = sio or socketio.AsyncClient(
			reconnection=True,
			reconnection_attempts=RECONNECT_ATTEMPTS,
			reconnection_delay=RECONNECT_DELAY_SECONDS,
			reconnection_delay_max=RECONNECT_DELAY_MAX_SECONDS,
		)
		self._sio.on("connect", self._handle_connect)
		self._sio.on("disconnect", self._handle_disconnect)
		self._sio.on("message", self._handle_message)
		self._sio.on("previousMessages", self._handle_history)
		self._sio.on("roomHistory", self._handle_room_history)
		self._sio.on("error", self._handle_error)

	@property
	def connected(self) -> bool:
		return bool(self._sio.connected)

	@property
	def rooms(self) -> Set[str]:
		return set(self._rooms)

	def _auth(self) -> dict:
		# evaluated again on every reconnect so a refreshed token is picked up
		token = self._token_provider() if self._token_provider else self._token
		return {"token": token or ""}

	async def connect(self, url: str, token: Optional[str] = None, **kwargs: Any) -> None:
		if token is not None:
			self._token = token
		await self._sio.connect(url, auth=self._auth, **kwargs)

	async def disconnect(self) -> None:
		await self._sio.disconnect()

	async def send(self, content: str, room: str = GLOBAL_ROOM, message_id: Optional[str] = None) -> str:
		"""Emit a send and return its ``messageId``."""
		message_id = message_id or new_message_id()
		await self._sio.emit("message", {"content": content, "room": room, "messageId": message_id})
		return message_id

	async def retry(self, message_id: str, content: str, room: str = GLOBAL_ROOM) -> str:
		return await self.send(content, room=room, message_id=message_id)

	async def get_messages(self, timeout: float = 5.0) -> List[dict]:
		result = await self._sio.call("getMessages", timeout=timeout)
		return list(result or [])

	async def join_room(self, room: str) -> None:
		self._rooms.add(room)
		await self._sio.emit("joinRoom", {"room": room})

	async def leave_room(self, room: str) -> None:
		self._rooms.discard(room)
		await self._sio.emit("leaveRoom", {"room": room})

	def _mark_seen(self, message_id: str) -> bool:
		"""Record ``message_id``; False when it arrived within the window already."""
		now = self._clock()
		for key in [k for k, deadline in self._seen.items() if deadline <= now]:
			del self._seen[key]
		if message_id in self._seen:
			return False
		self._seen[message_id] = now + self._seen_window
		return True

	async def _handle_connect(self) -> None:
		# the server keeps no room state across reconnects
		for room in sorted(self._rooms):
			await self._sio.emit("joinRoom", {"room": room})

	async def _handle_disconnect(self, *args: Any) -> None:
		logger.info("chat connection lost", extra={"reason": str(args[0]) if args else ""})

	async def _handle_message(self, data: dict) -> None:
		message_id = str((data or {}).get("id") or "")
		if message_id and not self._mark_seen(message_id):
			return
		self.messages.append(data)
		await _invoke(self.on_message, data)

	async def _handle_history(self, data: List[dict]) -> None:
		self.messages = list(data or [])
		for item in self.messages:
			if item.get("id"):
				self._mark_seen(str(item["id"]))
		await _invoke(self.on_history, GLOBAL_ROOM, self.messages)

	async def _handle_room_history(self, data: dict) -> None:
		payload = data or {}
		await _invoke(self.on_history, payload.get("room"), list(payload.get("messages") or []))

	async def _handle_error(self, data: Any) -> None:
		message = data.get("message") if isinstance(data, dict) else str(data)
		logger.warning("chat error event", extra={"error": message})
		await _invoke(self.on_error, data)

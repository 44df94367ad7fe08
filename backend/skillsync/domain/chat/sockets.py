"""Socket.IO gateway for realtime chat on the default namespace."""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import socketio
from pydantic import ValidationError

from .dedup import MessageDedup, build_dedup_window
from .models import GLOBAL_ROOM, ChatMessage
from .policy import ChatPersistenceError, ChatPolicyError, normalise_content, require_message_id, resolve_room
from .presence import PresenceTracker
from .schemas import RoomPayload, SendMessagePayload
from skillsync.infra.auth import AuthenticatedUser, AuthError, authenticate_token, bearer_from_header
from skillsync.obs import metrics as obs_metrics

if TYPE_CHECKING:  # pragma: no cover - typing only
	from .service import ChatService

logger = logging.getLogger(__name__)

_gateway: "ChatGateway" | None = None


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


def _handshake_token(environ: dict, auth: Any) -> Optional[str]:
	scope = environ.get("asgi.scope", environ)
	auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
	if isinstance(auth_payload, dict) and auth_payload.get("token"):
		return str(auth_payload["token"])
	return bearer_from_header(_header(scope, "authorization") or environ.get("HTTP_AUTHORIZATION"))


class ChatGateway(socketio.AsyncNamespace):
	"""Authenticates connections, tracks presence, and fans messages out to rooms."""

	def __init__(
		self,
		service: "ChatService" | None = None,
		*,
		dedup: MessageDedup | None = None,
		presence: PresenceTracker | None = None,
		namespace: str = "/",
	) -> None:
		super().__init__(namespace)
		if service is None:
			from .service import get_service

			service = get_service()
		self._service = service
		self._dedup = dedup if dedup is not None else build_dedup_window()
		self._presence = presence if presence is not None else PresenceTracker(service.directory)
		self._sessions: Dict[str, AuthenticatedUser] = {}
		self._room_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

	@property
	def sessions(self) -> Dict[str, AuthenticatedUser]:
		return self._sessions

	@property
	def dedup(self) -> MessageDedup:
		return self._dedup

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		token = _handshake_token(environ, auth)
		try:
			user = await authenticate_token(token, self._service.directory)
		except AuthError as exc:
			obs_metrics.inc_auth_rejected(exc.reason)
			logger.info("socket handshake refused", extra={"reason": exc.reason, "sid": sid})
			raise ConnectionRefusedError("Authentication error") from None
		await self.enter_room(sid, GLOBAL_ROOM)
		history = await self._history(GLOBAL_ROOM)
		await self.emit("previousMessages", history, room=sid)
		# bound only once the handshake can no longer fail
		self._sessions[sid] = user
		obs_metrics.socket_connected(self.namespace)
		try:
			await self._presence.mark_online(user.id)
		except Exception:
			obs_metrics.inc_presence_failure()
			logger.warning("presence online update failed", extra={"user_id": user.id}, exc_info=True)
		logger.info("socket connected", extra={"user_id": user.id, "sid": sid})

	async def on_disconnect(self, sid: str, reason: Any = None) -> None:
		user = self._sessions.pop(sid, None)
		if user is None:
			return
		obs_metrics.socket_disconnected(self.namespace)
		try:
			await self._presence.mark_offline(user.id)
		except Exception:
			# nobody left to notify
			obs_metrics.inc_presence_failure()
			logger.warning("presence offline update failed", extra={"user_id": user.id}, exc_info=True)
		logger.info("socket disconnected", extra={"user_id": user.id, "sid": sid, "reason": str(reason or "")})

	async def on_message(self, sid: str, data: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "message")
		user = self._sessions.get(sid)
		if user is None:
			await self._emit_error(sid, "Not authenticated", code="unauthenticated")
			return
		try:
			payload = SendMessagePayload.model_validate(data if isinstance(data, dict) else {})
			content = normalise_content(payload.content)
			message_id = require_message_id(payload.message_id)
			room_id, key = resolve_room(payload.room, user.id)
			await self._service.require_direct_peer(user.id, key)
		except ValidationError:
			obs_metrics.inc_chat_send_failure("invalid_payload")
			await self._emit_error(sid, "Invalid message payload", code="invalid_payload")
			return
		except ChatPolicyError as exc:
			obs_metrics.inc_chat_send_failure(exc.code)
			await self._emit_error(sid, exc.detail, code=exc.code)
			return
		except ChatPersistenceError:
			await self._emit_error(sid, "Failed to send message", code="persistence")
			return
		try:
			await self.publish(user, room_id, content, dedup_key=f"{user.id}:{message_id}")
		except ChatPersistenceError:
			await self._emit_error(sid, "Failed to send message", code="persistence")
		except Exception:
			logger.exception("chat send failed", extra={"user_id": user.id, "room": room_id})
			obs_metrics.inc_chat_send_failure("internal")
			await self._emit_error(sid, "Failed to send message", code="internal")

	async def on_getMessages(self, sid: str, data: Any = None) -> List[dict]:
		obs_metrics.socket_event(self.namespace, "getMessages")
		if sid not in self._sessions:
			return []
		return await self._history(GLOBAL_ROOM)

	async def on_joinRoom(self, sid: str, data: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "joinRoom")
		room_id = await self._authorised_room(sid, data)
		if room_id is None:
			return
		await self.enter_room(sid, room_id)
		history = await self._history(room_id)
		await self.emit("roomHistory", {"room": room_id, "messages": history}, room=sid)

	async def on_leaveRoom(self, sid: str, data: Any = None) -> None:
		obs_metrics.socket_event(self.namespace, "leaveRoom")
		room_id = await self._authorised_room(sid, data)
		if room_id is None:
			return
		await self.leave_room(sid, room_id)

	async def publish(
		self,
		sender: AuthenticatedUser,
		room_id: str,
		content: str,
		*,
		dedup_key: Optional[str] = None,
	) -> Optional[ChatMessage]:
		"""Persist then broadcast under the room's lock. Returns None for a duplicate send."""
		lock = self._room_lock(room_id)
		async with lock:
			if dedup_key is not None and not await self._dedup.claim(dedup_key):
				obs_metrics.inc_chat_dedup_drop()
				logger.debug("duplicate chat send dropped", extra={"room": room_id, "user_id": sender.id})
				return None
			try:
				message = await self._service.post_message(sender, room_id, content)
			except Exception:
				if dedup_key is not None:
					await self._dedup.release(dedup_key)
				raise
			await self.broadcast(message)
		await self._service.notify_unread(message)
		return message

	async def broadcast(self, message: ChatMessage) -> None:
		obs_metrics.socket_event(self.namespace, "message:out")
		await self.emit("message", message.to_broadcast(), room=message.room_id)

	async def close(self) -> None:
		await self._dedup.close()
		self._sessions.clear()

	def _room_lock(self, room_id: str) -> asyncio.Lock:
		lock = self._room_locks.get(room_id)
		if lock is None:
			lock = asyncio.Lock()
			self._room_locks[room_id] = lock
		return lock

	async def _history(self, room_id: str) -> List[dict]:
		try:
			messages = await self._service.history(room_id)
		except ChatPersistenceError:
			logger.warning("chat history unavailable", extra={"room": room_id}, exc_info=True)
			return []
		return [message.to_broadcast() for message in messages]

	async def _authorised_room(self, sid: str, data: Any) -> Optional[str]:
		user = self._sessions.get(sid)
		if user is None:
			await self._emit_error(sid, "Not authenticated", code="unauthenticated")
			return None
		try:
			raw = data if isinstance(data, str) else RoomPayload.model_validate(data if isinstance(data, dict) else {}).room
		except ValidationError:
			await self._emit_error(sid, "Invalid room payload", code="invalid_payload")
			return None
		try:
			room_id, key = resolve_room(raw, user.id)
			await self._service.require_direct_peer(user.id, key)
		except ChatPolicyError as exc:
			await self._emit_error(sid, exc.detail, code=exc.code)
			return None
		except ChatPersistenceError:
			await self._emit_error(sid, "Chat unavailable", code="persistence")
			return None
		return room_id

	async def _emit_error(self, sid: str, message: str, *, code: str) -> None:
		obs_metrics.socket_event(self.namespace, "error")
		await self.emit("error", {"message": message, "code": code}, room=sid)


def set_gateway(gateway: ChatGateway | None) -> None:
	global _gateway
	_gateway = gateway


def get_gateway() -> ChatGateway | None:
	return _gateway

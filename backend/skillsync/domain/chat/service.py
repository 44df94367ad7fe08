"""Chat service shared by the realtime gateway and the REST endpoints."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from . import sockets
from .models import GLOBAL_ROOM, ChatMessage, ChatRoom, DirectRoomKey, MessageDraft, room_kind
from .policy import ChatPersistenceError, ChatPolicyError, normalise_content
from .schemas import ChatRoomOut, MessageOut, MessageUser
from .store import ChatStore
from skillsync.domain.identity.users import UserDirectory
from skillsync.infra.auth import AuthenticatedUser
from skillsync.obs import metrics as obs_metrics
from skillsync.settings import settings

logger = logging.getLogger(__name__)


def _room_not_found() -> ChatPolicyError:
	return ChatPolicyError("unknown_room", status_code=404, message="Chat not found")


class ChatService:
	def __init__(
		self,
		store: ChatStore | None = None,
		directory: UserDirectory | None = None,
		*,
		history_limit: int | None = None,
	) -> None:
		self._store = store if store is not None else ChatStore()
		self._directory = directory if directory is not None else UserDirectory()
		self._history_limit = history_limit if history_limit is not None else settings.chat_history_limit

	@property
	def store(self) -> ChatStore:
		return self._store

	@property
	def directory(self) -> UserDirectory:
		return self._directory

	@property
	def history_limit(self) -> int:
		return self._history_limit

	async def history(self, room_id: str = GLOBAL_ROOM, limit: int | None = None) -> List[ChatMessage]:
		"""Latest messages of a room, oldest first, never more than the history limit."""
		bounded = self._history_limit if limit is None else max(0, min(limit, self._history_limit))
		try:
			return await self._store.recent_messages(room_id, bounded)
		except Exception as exc:
			raise ChatPersistenceError("history_unavailable") from exc

	async def post_message(self, sender: AuthenticatedUser, room_id: str, content: str) -> ChatMessage:
		"""Persist one message. Callers validate ``content`` and room access first."""
		draft = MessageDraft(
			sender_id=sender.id,
			sender_name=sender.name,
			sender_avatar=sender.profile_picture,
			content=content,
			created_at=datetime.now(timezone.utc),
		)
		try:
			message = await self._store.append_message(room_id, draft)
		except ChatPolicyError:
			raise
		except Exception as exc:
			obs_metrics.inc_chat_send_failure("persistence")
			raise ChatPersistenceError("Failed to send message") from exc
		obs_metrics.inc_chat_send(room_kind(room_id))
		return message

	async def notify_unread(self, message: ChatMessage) -> int:
		"""Bump unread counters for notified users other than the sender."""
		try:
			targets = await self._directory.list_notified_user_ids(exclude=(message.sender_id,))
			key = DirectRoomKey.parse(message.room_id)
			if key is not None:
				peer = key.peer_of(message.sender_id)
				targets = [uid for uid in targets if uid == peer]
			await self._directory.increment_unread(targets)
		except Exception:
			logger.warning("unread counter update failed", extra={"room": message.room_id}, exc_info=True)
			return 0
		return len(targets)

	async def _people(self, user_ids: Iterable[str]) -> Dict[str, MessageUser]:
		people: Dict[str, MessageUser] = {}
		for user_id in dict.fromkeys(user_ids):
			profile = await self._directory.get_user(user_id)
			if profile is not None:
				people[user_id] = MessageUser(
					id=profile.id,
					name=profile.name,
					profile_picture=profile.profile_picture,
				)
		return people

	async def require_direct_peer(self, user_id: str, key: DirectRoomKey | None) -> None:
		"""Refuse a direct room whose other participant is not a known user."""
		if key is None:
			return
		try:
			profile = await self._directory.get_user(key.peer_of(user_id))
		except Exception as exc:
			raise ChatPersistenceError("chat_unavailable") from exc
		if profile is None:
			raise ChatPolicyError("user_not_found", status_code=404, message="User not found")

	async def _participant_room(self, auth_user: AuthenticatedUser, chat_id: str) -> ChatRoom:
		try:
			room = await self._store.get_room(chat_id)
		except Exception as exc:
			raise ChatPersistenceError("chat_unavailable") from exc
		if room is None or not room.is_direct or not room.is_participant(auth_user.id):
			raise _room_not_found()
		return room

	async def list_direct_rooms(self, auth_user: AuthenticatedUser) -> List[ChatRoomOut]:
		try:
			rooms = await self._store.find_rooms_for_user(auth_user.id)
		except Exception as exc:
			raise ChatPersistenceError("chat_unavailable") from exc
		people = await self._people(uid for room in rooms for uid in room.participants)
		return [ChatRoomOut.from_model(room, people) for room in rooms]

	async def get_direct_room(self, auth_user: AuthenticatedUser, chat_id: str) -> ChatRoomOut:
		room = await self._participant_room(auth_user, chat_id)
		try:
			messages = await self._store.recent_messages(room.room_id, None)
		except Exception as exc:
			raise ChatPersistenceError("chat_unavailable") from exc
		people = await self._people(room.participants)
		return ChatRoomOut.from_model(replace(room, messages=tuple(messages)), people)

	async def open_direct_room(self, auth_user: AuthenticatedUser, peer_id: str) -> ChatRoomOut:
		if str(peer_id) == auth_user.id:
			raise ChatPolicyError("cannot_dm_self", message="Cannot open a chat with yourself")
		if await self._directory.get_user(str(peer_id)) is None:
			raise ChatPolicyError("user_not_found", status_code=404, message="User not found")
		try:
			room = await self._store.find_or_create_direct_room(auth_user.id, str(peer_id))
		except ChatPolicyError:
			raise
		except Exception as exc:
			raise ChatPersistenceError("chat_unavailable") from exc
		people = await self._people(room.participants)
		return ChatRoomOut.from_model(room, people)

	async def send_direct_message(self, auth_user: AuthenticatedUser, chat_id: str, content: object) -> MessageOut:
		"""REST write path; live sockets in the room receive the same ``message`` broadcast."""
		text = normalise_content(content)
		room = await self._participant_room(auth_user, chat_id)
		gateway = sockets.get_gateway()
		if gateway is not None:
			message = await gateway.publish(auth_user, room.room_id, text)
		else:
			message = await self.post_message(auth_user, room.room_id, text)
			await self.notify_unread(message)
		if message is None:
			raise ChatPersistenceError("Failed to send message")
		return MessageOut.from_model(message)


_SERVICE = ChatService()


def get_service() -> ChatService:
	return _SERVICE


async def list_direct_rooms(auth_user: AuthenticatedUser) -> List[ChatRoomOut]:
	return await _SERVICE.list_direct_rooms(auth_user)


async def get_direct_room(auth_user: AuthenticatedUser, chat_id: str) -> ChatRoomOut:
	return await _SERVICE.get_direct_room(auth_user, chat_id)


async def open_direct_room(auth_user: AuthenticatedUser, peer_id: str) -> ChatRoomOut:
	return await _SERVICE.open_direct_room(auth_user, peer_id)


async def send_direct_message(auth_user: AuthenticatedUser, chat_id: str, content: object) -> MessageOut:
	return await _SERVICE.send_direct_message(auth_user, chat_id, content)


async def history(room_id: str = GLOBAL_ROOM, limit: Optional[int] = None) -> List[ChatMessage]:
	return await _SERVICE.history(room_id, limit)

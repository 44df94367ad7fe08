from unittest.mock import AsyncMock

import pytest

from skillsync.domain.chat import sockets
from skillsync.domain.chat.models import DirectRoomKey
from skillsync.domain.chat.policy import ChatPersistenceError, ChatPolicyError
from skillsync.domain.chat.service import ChatService
from skillsync.domain.chat.store import ChatStore
from skillsync.domain.identity.users import UserDirectory
from skillsync.infra.auth import AuthenticatedUser


class BrokenStore(ChatStore):
    async def append_message(self, room_id, draft):
        raise ConnectionError("store down")

    async def recent_messages(self, room_id, limit):
        raise ConnectionError("store down")


def _user(user_id: str) -> AuthenticatedUser:
    return AuthenticatedUser(id=user_id, name=user_id.title(), profile_picture=f"{user_id}.png")


@pytest.fixture
def no_gateway():
    original = sockets.get_gateway()
    sockets.set_gateway(None)
    yield
    sockets.set_gateway(original)


@pytest.mark.asyncio
async def test_post_message_denormalises_sender():
    service = ChatService()
    message = await service.post_message(_user("alice"), "global", "hello")

    payload = message.to_broadcast()
    assert payload["user"] == {"_id": "alice", "name": "Alice", "profilePicture": "alice.png"}
    assert payload["content"] == "hello"
    assert payload["room"] == "global"
    assert payload["id"] == message.id


@pytest.mark.asyncio
async def test_history_is_capped_at_limit():
    service = ChatService(history_limit=3)
    for idx in range(5):
        await service.post_message(_user("alice"), "global", f"m{idx}")

    history = await service.history()
    assert [m.content for m in history] == ["m2", "m3", "m4"]
    assert len(await service.history(limit=100)) == 3
    assert [m.content for m in await service.history(limit=1)] == ["m4"]


@pytest.mark.asyncio
async def test_store_failures_become_persistence_errors():
    service = ChatService(store=BrokenStore())
    with pytest.raises(ChatPersistenceError):
        await service.post_message(_user("alice"), "global", "hello")
    with pytest.raises(ChatPersistenceError):
        await service.history()


@pytest.mark.asyncio
async def test_unread_counters_for_global_room(make_user):
    await make_user("alice")
    await make_user("bob")
    await make_user("carol", notifications=False)
    directory = UserDirectory()
    service = ChatService(directory=directory)

    message = await service.post_message(_user("alice"), "global", "hi all")
    assert await service.notify_unread(message) == 1

    assert (await directory.get_user("alice")).unread_messages == 0
    assert (await directory.get_user("bob")).unread_messages == 1
    assert (await directory.get_user("carol")).unread_messages == 0


@pytest.mark.asyncio
async def test_unread_counters_for_direct_room_only_touch_peer(make_user):
    await make_user("alice")
    await make_user("bob")
    await make_user("dave")
    directory = UserDirectory()
    service = ChatService(directory=directory)

    message = await service.post_message(_user("alice"), "dm:alice:bob", "psst")
    await service.notify_unread(message)

    assert (await directory.get_user("bob")).unread_messages == 1
    assert (await directory.get_user("dave")).unread_messages == 0


@pytest.mark.asyncio
async def test_unread_failure_is_logged_not_raised(caplog):
    directory = UserDirectory()
    directory.list_notified_user_ids = AsyncMock(side_effect=RuntimeError("db gone"))
    service = ChatService(directory=directory)
    message = await service.post_message(_user("alice"), "global", "hi")

    assert await service.notify_unread(message) == 0
    assert "unread counter update failed" in caplog.text


@pytest.mark.asyncio
async def test_open_direct_room_validates_peer(make_user):
    await make_user("alice")
    await make_user("bob")
    service = ChatService()

    room = await service.open_direct_room(_user("alice"), "bob")
    assert room.id == "dm:alice:bob"
    assert [p.id for p in room.participants] == ["alice", "bob"]
    assert room.participants[1].name == "Bob"

    with pytest.raises(ChatPolicyError) as self_dm:
        await service.open_direct_room(_user("alice"), "alice")
    assert self_dm.value.code == "cannot_dm_self"

    with pytest.raises(ChatPolicyError) as missing:
        await service.open_direct_room(_user("alice"), "ghost")
    assert missing.value.status_code == 404


@pytest.mark.asyncio
async def test_direct_room_access_is_limited_to_participants(make_user, no_gateway):
    await make_user("alice")
    await make_user("bob")
    service = ChatService()
    await service.open_direct_room(_user("alice"), "bob")

    sent = await service.send_direct_message(_user("bob"), "dm:alice:bob", "  hey  ")
    assert sent.content == "hey"
    assert sent.sender.id == "bob"

    room = await service.get_direct_room(_user("alice"), "dm:alice:bob")
    assert [m.content for m in room.messages] == ["hey"]

    for chat_id in ("dm:alice:bob", "global", "dm:alice:nobody"):
        with pytest.raises(ChatPolicyError) as exc:
            await service.get_direct_room(_user("carol"), chat_id)
        assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_send_direct_message_publishes_through_gateway(make_user):
    await make_user("alice")
    await make_user("bob")
    service = ChatService()
    await service.open_direct_room(_user("alice"), "bob")

    gateway = sockets.ChatGateway(service)
    gateway.emit = AsyncMock()
    original = sockets.get_gateway()
    sockets.set_gateway(gateway)
    try:
        sent = await service.send_direct_message(_user("alice"), "dm:alice:bob", "live")
    finally:
        sockets.set_gateway(original)
        await gateway.close()

    gateway.emit.assert_awaited_once()
    event, payload = gateway.emit.await_args.args
    assert event == "message"
    assert payload["id"] == sent.id
    assert gateway.emit.await_args.kwargs["room"] == "dm:alice:bob"


@pytest.mark.asyncio
async def test_require_direct_peer_checks_the_directory(make_user):
    await make_user("alice")
    await make_user("bob")
    service = ChatService()

    await service.require_direct_peer("alice", None)
    await service.require_direct_peer("alice", DirectRoomKey.from_participants("alice", "bob"))

    with pytest.raises(ChatPolicyError) as exc:
        await service.require_direct_peer("alice", DirectRoomKey.from_participants("alice", "ghost"))
    assert exc.value.code == "user_not_found"
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_send_direct_message_fails_when_nothing_was_delivered(make_user):
    await make_user("alice")
    await make_user("bob")
    service = ChatService()
    await service.open_direct_room(_user("alice"), "bob")

    gateway = AsyncMock()
    gateway.publish.return_value = None
    original = sockets.get_gateway()
    sockets.set_gateway(gateway)
    try:
        with pytest.raises(ChatPersistenceError):
            await service.send_direct_message(_user("alice"), "dm:alice:bob", "lost")
    finally:
        sockets.set_gateway(original)

from unittest.mock import AsyncMock, MagicMock

import pytest

from skillsync.client.chat_client import (
    RECONNECT_ATTEMPTS,
    RECONNECT_DELAY_SECONDS,
    ChatClient,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _fake_sio():
    sio = MagicMock()
    sio.connected = True
    sio.emit = AsyncMock()
    sio.call = AsyncMock()
    sio.connect = AsyncMock()
    sio.disconnect = AsyncMock()
    return sio


def _handlers(sio) -> dict:
    return {call.args[0]: call.args[1] for call in sio.on.call_args_list}


def test_default_transport_reconnects_with_bounded_attempts():
    client = ChatClient(token="t")
    assert client._sio.reconnection_attempts == RECONNECT_ATTEMPTS
    assert client._sio.reconnection_delay == RECONNECT_DELAY_SECONDS


@pytest.mark.asyncio
async def test_connect_sends_token_in_auth_callable_each_time():
    sio = _fake_sio()
    tokens = iter(["first", "refreshed"])
    client = ChatClient(token_provider=lambda: next(tokens), sio=sio)

    await client.connect("http://chat.local")

    auth = sio.connect.await_args.kwargs["auth"]
    assert callable(auth)
    assert auth() == {"token": "first"}
    assert auth() == {"token": "refreshed"}


@pytest.mark.asyncio
async def test_each_send_gets_fresh_message_id_and_retry_reuses_it():
    sio = _fake_sio()
    client = ChatClient(token="t", sio=sio)

    first = await client.send("hello")
    second = await client.send("hello")
    again = await client.retry(first, "hello")

    assert first != second
    assert again == first
    payloads = [call.args[1] for call in sio.emit.await_args_list]
    assert payloads[0] == {"content": "hello", "room": "global", "messageId": first}
    assert payloads[2]["messageId"] == first
    assert all(call.args[0] == "message" for call in sio.emit.await_args_list)


@pytest.mark.asyncio
async def test_get_messages_uses_ack_call():
    sio = _fake_sio()
    sio.call.return_value = [{"id": "1"}]
    client = ChatClient(token="t", sio=sio)

    assert await client.get_messages() == [{"id": "1"}]
    assert sio.call.await_args.args == ("getMessages",)


@pytest.mark.asyncio
async def test_broadcast_is_rendered_once_within_window():
    sio = _fake_sio()
    clock = FakeClock()
    received = []
    client = ChatClient(token="t", sio=sio, clock=clock, on_message=received.append)
    on_message = _handlers(sio)["message"]

    await on_message({"id": "a", "content": "hi"})
    await on_message({"id": "a", "content": "hi"})
    assert [m["id"] for m in received] == ["a"]

    clock.now += 6
    await on_message({"id": "a", "content": "hi"})
    assert len(received) == 2
    assert len(client.messages) == 2


@pytest.mark.asyncio
async def test_previous_messages_replace_local_list():
    sio = _fake_sio()
    histories = []

    async def on_history(room, messages):
        histories.append((room, messages))

    client = ChatClient(token="t", sio=sio, on_history=on_history)
    handlers = _handlers(sio)
    await handlers["message"]({"id": "stale"})

    await handlers["previousMessages"]([{"id": "1"}, {"id": "2"}])

    assert [m["id"] for m in client.messages] == ["1", "2"]
    assert histories == [("global", [{"id": "1"}, {"id": "2"}])]
    await handlers["message"]({"id": "2"})
    assert len(client.messages) == 2


@pytest.mark.asyncio
async def test_rooms_are_rejoined_after_reconnect():
    sio = _fake_sio()
    client = ChatClient(token="t", sio=sio)
    await client.join_room("dm:alice:bob")
    await client.join_room("dm:alice:carol")
    await client.leave_room("dm:alice:carol")
    sio.emit.reset_mock()

    await _handlers(sio)["connect"]()

    assert [call.args for call in sio.emit.await_args_list] == [("joinRoom", {"room": "dm:alice:bob"})]
    assert client.rooms == {"dm:alice:bob"}


@pytest.mark.asyncio
async def test_error_events_reach_callback():
    sio = _fake_sio()
    errors = []
    ChatClient(token="t", sio=sio, on_error=errors.append)

    await _handlers(sio)["error"]({"message": "Message content is required", "code": "empty_content"})

    assert errors == [{"message": "Message content is required", "code": "empty_content"}]

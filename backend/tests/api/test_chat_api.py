from unittest.mock import AsyncMock

import pytest

from skillsync.domain.chat import sockets


def _auth(token: str) -> dict:
	return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def live_gateway(monkeypatch):
	gateway = sockets.get_gateway()
	assert gateway is not None
	emit = AsyncMock()
	monkeypatch.setattr(gateway, "emit", emit)
	return emit


@pytest.mark.asyncio
async def test_requires_bearer_token(api_client):
	resp = await api_client.get("/api/chat")
	assert resp.status_code == 401
	body = resp.json()
	assert body["detail"] == "missing_token"
	assert body["request_id"]
	assert resp.headers["X-Request-Id"]

	resp = await api_client.get("/api/chat", headers=_auth("nope"))
	assert resp.status_code == 401
	assert resp.json()["detail"] == "invalid_token"


@pytest.mark.asyncio
async def test_open_list_and_fetch_direct_chat(api_client, make_user, live_gateway):
	_, alice = await make_user("alice")
	await make_user("bob")

	resp = await api_client.post("/api/chat/user/bob", headers=_auth(alice))
	assert resp.status_code == 200
	room = resp.json()
	assert room["_id"] == "dm:alice:bob"
	assert [p["_id"] for p in room["participants"]] == ["alice", "bob"]
	assert room["participants"][1]["profilePicture"] == "https://cdn.example/bob.png"

	again = await api_client.post("/api/chat/user/bob", headers=_auth(alice))
	assert again.json()["_id"] == room["_id"]

	resp = await api_client.post(f"/api/chat/{room['_id']}/messages", json={"content": " hello bob "}, headers=_auth(alice))
	assert resp.status_code == 201
	message = resp.json()
	assert message["content"] == "hello bob"
	assert message["sender"]["_id"] == "alice"
	assert message["room"] == "dm:alice:bob"

	resp = await api_client.get("/api/chat", headers=_auth(alice))
	assert resp.status_code == 200
	chats = resp.json()
	assert [chat["_id"] for chat in chats] == ["dm:alice:bob"]
	assert chats[0]["lastMessage"] is not None

	resp = await api_client.get(f"/api/chat/{room['_id']}", headers=_auth(alice))
	assert resp.status_code == 200
	assert [m["content"] for m in resp.json()["messages"]] == ["hello bob"]


@pytest.mark.asyncio
async def test_rest_message_is_broadcast_to_live_sockets(api_client, make_user, live_gateway):
	_, alice = await make_user("alice")
	await make_user("bob")
	await api_client.post("/api/chat/user/bob", headers=_auth(alice))

	resp = await api_client.post("/api/chat/dm:alice:bob/messages", json={"content": "ping"}, headers=_auth(alice))

	assert resp.status_code == 201
	live_gateway.assert_awaited_once()
	event, payload = live_gateway.await_args.args
	assert event == "message"
	assert payload["id"] == resp.json()["_id"]
	assert live_gateway.await_args.kwargs["room"] == "dm:alice:bob"


@pytest.mark.asyncio
async def test_outsiders_get_not_found(api_client, make_user, live_gateway):
	_, alice = await make_user("alice")
	await make_user("bob")
	_, carol = await make_user("carol")
	await api_client.post("/api/chat/user/bob", headers=_auth(alice))

	resp = await api_client.get("/api/chat/dm:alice:bob", headers=_auth(carol))
	assert resp.status_code == 404
	assert resp.json()["detail"] == "Chat not found"

	resp = await api_client.post("/api/chat/dm:alice:bob/messages", json={"content": "hi"}, headers=_auth(carol))
	assert resp.status_code == 404
	live_gateway.assert_not_awaited()

	resp = await api_client.get("/api/chat/global", headers=_auth(alice))
	assert resp.status_code == 404


@pytest.mark.asyncio
async def test_invalid_requests(api_client, make_user, live_gateway):
	_, alice = await make_user("alice")
	await make_user("bob")
	await api_client.post("/api/chat/user/bob", headers=_auth(alice))

	resp = await api_client.post("/api/chat/user/alice", headers=_auth(alice))
	assert resp.status_code == 400
	assert resp.json()["code"] == "cannot_dm_self"

	resp = await api_client.post("/api/chat/user/ghost", headers=_auth(alice))
	assert resp.status_code == 404

	resp = await api_client.post("/api/chat/dm:alice:bob/messages", json={"content": "   "}, headers=_auth(alice))
	assert resp.status_code == 400
	assert resp.json()["detail"] == "Message content is required"

	resp = await api_client.post("/api/chat/dm:alice:bob/messages", json={}, headers=_auth(alice))
	assert resp.status_code == 422
	assert resp.json()["detail"] == "validation_error"

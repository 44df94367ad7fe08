import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("JWT_SECRET", "skillsync-test-secret-0123456789abcdef")
os.environ.setdefault("ENV", "dev")

from skillsync.domain.chat.store import reset_chat_store
from skillsync.domain.identity.users import UserDirectory, UserProfile, reset_user_store
from skillsync.infra import jwt as jwt_helper
from skillsync.infra import postgres
from skillsync.main import app


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from skillsync.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest_asyncio.fixture(autouse=True)
async def clean_stores():
	await reset_chat_store()
	await reset_user_store()
	yield
	await reset_chat_store()
	await reset_user_store()


@pytest.fixture
def make_user():
	"""Register a user in the directory and return ``(profile, token)``."""
	directory = UserDirectory()

	async def _make(user_id: str, name: str | None = None, *, notifications: bool = True):
		profile = await directory.upsert_user(
			UserProfile(
				id=user_id,
				name=name or user_id.title(),
				profile_picture=f"https://cdn.example/{user_id}.png",
				notifications=notifications,
			)
		)
		return profile, jwt_helper.encode_access(user_id)

	return _make


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client

"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillsync.api import chat, ops
from skillsync.api.errors import install_error_handlers
from skillsync.api.middleware_request_id import RequestIdMiddleware
from skillsync.domain.chat.service import get_service
from skillsync.domain.chat.sockets import ChatGateway, set_gateway
from skillsync.infra import postgres
from skillsync.obs import init as obs_init
from skillsync.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	try:
		await postgres.init_pool()
	except Exception:
		logger.warning("postgres unavailable; chat falls back to the in-process store", exc_info=True)
	service = get_service()
	try:
		await service.directory.ensure_schema()
		await service.store.ensure_schema()
	except Exception:
		logger.warning("schema bootstrap failed", exc_info=True)
	try:
		yield
	finally:
		await chat_gateway.close()
		await postgres.close_pool()


app = FastAPI(title="SkillSync Chat", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else ["https://skill-sync-lime.vercel.app"]

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = ["https://skill-sync-lime.vercel.app"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["GET", "POST"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
chat_gateway = ChatGateway(get_service())
sio.register_namespace(chat_gateway)
set_gateway(chat_gateway)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.add_middleware(RequestIdMiddleware)

app.include_router(chat.router, tags=["chat"])
app.include_router(ops.router, tags=["ops"])

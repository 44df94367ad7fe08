"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from skillsync.infra import postgres
from skillsync.infra.redis import redis_client
from skillsync.settings import settings

router = APIRouter(prefix="", tags=["ops"])

LOGGER = logging.getLogger(__name__)


def _resolve_token(x_admin_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
	if x_admin_token:
		return x_admin_token
	if authorization and authorization.lower().startswith("bearer "):
		return authorization.split(" ", 1)[1]
	return None


async def require_metrics_access(
	X_Admin_Token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
	authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
	if settings.obs_metrics_public:
		return
	token = settings.obs_admin_token
	if not token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="admin_token_not_configured")
	if _resolve_token(X_Admin_Token, authorization) != token:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="forbidden")


async def _postgres_ok(timeout: float = 0.3) -> bool:
	try:
		pool = await postgres.get_pool()
		async with pool.acquire() as conn:
			await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)
		return True
	except Exception:
		LOGGER.warning("Postgres health check failed", exc_info=True)
		return False


async def _redis_ok(timeout: float = 0.2) -> bool:
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
		return True
	except Exception:
		LOGGER.warning("Redis health check failed", exc_info=True)
		return False


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok"}


@router.get("/api/health")
async def health() -> Response:
	checks = {"postgres": await _postgres_ok(), "redis": await _redis_ok()}
	payload = {
		"status": "ok" if checks["postgres"] else "degraded",
		"service": settings.service_name,
		"checks": checks,
	}
	return JSONResponse(content=payload)


@router.get("/metrics")
async def prometheus_metrics(_: None = Depends(require_metrics_access)) -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

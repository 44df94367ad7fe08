"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from skillsync.api.request_id import get_request_id
from skillsync.domain.chat.policy import ChatPersistenceError, ChatPolicyError

logger = logging.getLogger(__name__)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-Id": rid})

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": exc.errors(), "request_id": rid}
        return JSONResponse(status_code=422, content=payload, headers={"X-Request-Id": rid})

    @app.exception_handler(ChatPolicyError)
    async def chat_policy_handler(request: Request, exc: ChatPolicyError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "code": exc.code, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload, headers={"X-Request-Id": rid})

    @app.exception_handler(ChatPersistenceError)
    async def chat_persistence_handler(request: Request, exc: ChatPersistenceError):  # type: ignore[override]
        rid = get_request_id(request)
        logger.warning("chat store failure", extra={"path": request.url.path}, exc_info=exc)
        payload = {"detail": "chat_unavailable", "request_id": rid}
        return JSONResponse(status_code=500, content=payload, headers={"X-Request-Id": rid})

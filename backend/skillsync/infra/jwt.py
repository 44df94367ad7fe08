"""Centralised JWT helpers for access tokens.

Uses HS256 with the application's secret key. The same tokens authenticate
REST requests and the realtime handshake.
"""

from __future__ import annotations

import time
from typing import Any, Dict

import jwt
from jwt import InvalidTokenError

from skillsync.settings import settings


def encode_access(user_id: str, **claims: object) -> str:
	"""Encode an access token for ``user_id`` valid for ``access_ttl_days``."""
	now = int(time.time())
	body: Dict[str, Any] = {
		"sub": str(user_id),
		"userId": str(user_id),
		"iat": now,
		"exp": now + settings.access_ttl_days * 86400,
	}
	body.update(claims)
	return jwt.encode(body, settings.secret_key, algorithm="HS256")


def decode_access(token: str) -> dict[str, object]:
	"""Decode and validate an access token.

	Raises jwt.InvalidTokenError subclasses on failure.
	"""
	payload = jwt.decode(
		token,
		settings.secret_key,
		algorithms=["HS256"],
		leeway=5,
		options={"require": ["iat"]},
	)
	if not (payload.get("userId") or payload.get("sub")):
		raise InvalidTokenError("missing_claim:userId")
	return payload  # type: ignore[return-value]


def subject(payload: dict[str, object]) -> str:
	return str(payload.get("userId") or payload.get("sub") or "").strip()

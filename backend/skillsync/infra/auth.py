"""Authentication helpers shared by REST endpoints and the realtime gateway.

Both surfaces apply one rule: an HS256 access token signed with
``settings.secret_key`` whose subject resolves to an existing user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from skillsync.domain.identity.users import UserDirectory, UserProfile
from skillsync.infra import jwt as jwt_helper


class AuthError(Exception):
	"""Raised when a credential cannot be turned into a known user."""

	def __init__(self, reason: str) -> None:
		super().__init__(reason)
		self.reason = reason


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	name: str
	profile_picture: str = ""

	@classmethod
	def from_profile(cls, profile: UserProfile) -> "AuthenticatedUser":
		return cls(id=profile.id, name=profile.name, profile_picture=profile.profile_picture)

	def public(self) -> dict:
		return {"_id": self.id, "name": self.name, "profilePicture": self.profile_picture}


_bearer_scheme = HTTPBearer(auto_error=False)
_directory = UserDirectory()


def verify_access_jwt(token: str) -> str:
	"""Validate an access token and return the user id it was issued for."""
	token = (token or "").strip()
	if not token:
		raise AuthError("missing_token")
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# Normalise all decode failures to invalid_token
		raise AuthError("invalid_token") from None
	user_id = jwt_helper.subject(payload)
	if not user_id:
		raise AuthError("invalid_token")
	return user_id


async def authenticate_token(token: Optional[str], directory: UserDirectory | None = None) -> AuthenticatedUser:
	"""Resolve a bearer credential to the user it belongs to."""
	user_id = verify_access_jwt(token or "")
	profile = await (directory if directory is not None else _directory).get_user(user_id)
	if profile is None:
		raise AuthError("user_not_found")
	return AuthenticatedUser.from_profile(profile)


def bearer_from_header(value: Optional[str]) -> Optional[str]:
	if value and value.lower().startswith("bearer "):
		return value.split(" ", 1)[1].strip() or None
	return None


async def get_current_user(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""FastAPI dependency resolving the caller from the Authorization header."""
	if not credentials or credentials.scheme.lower() != "bearer":
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_token")
	try:
		return await authenticate_token(credentials.credentials)
	except AuthError as exc:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.reason) from None

"""Authentication helpers for FastAPI endpoints.

- Bearer JWTs are verified with the auth provider's shared secret.
- The service role key, presented as a bearer token, authenticates scheduled
  jobs and privileged RPC callers.
- `X-User-Id` is honoured only in development.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from blossom.infra import jwt as jwt_helper
from blossom.settings import settings

SERVICE_ROLE = "service_role"


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	role: str = "authenticated"

	@property
	def is_service(self) -> bool:
		return self.role == SERVICE_ROLE

	def may_act_for(self, user_id: str) -> bool:
		return self.is_service or str(self.id) == str(user_id)


_bearer_scheme = HTTPBearer(auto_error=False)


def _is_service_key(token: str) -> bool:
	key = settings.service_role_key
	if not key:
		return False
	return hmac.compare_digest(token.encode("utf-8"), key.encode("utf-8"))


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	subject = str(payload.get("sub") or "").strip()
	if not subject:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	role = str(payload.get("role") or "authenticated")
	return AuthenticatedUser(id=subject, role=role)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the caller from a bearer token, or from headers in development."""
	if credentials and credentials.scheme.lower() == "bearer":
		if _is_service_key(credentials.credentials):
			return AuthenticatedUser(id=SERVICE_ROLE, role=SERVICE_ROLE)
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def require_service(
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> None:
	"""Guard for scheduled job endpoints.

	Open only in development when no service key is configured; otherwise the
	bearer token must equal the key.
	"""
	if not settings.service_role_key and settings.is_dev():
		return None
	if credentials and credentials.scheme.lower() == "bearer" and _is_service_key(credentials.credentials):
		return None
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_service_key")

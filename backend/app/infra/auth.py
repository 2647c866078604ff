"""Authentication helpers for FastAPI endpoints.

The identity provider hands us a signed access JWT; we verify it and expose the
`(id, email, roles)` triple to the clubs core. Dev headers are only honoured in
development environments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.infra import jwt as jwt_helper
from app.settings import optional_str, settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	email: Optional[str] = None
	roles: Tuple[str, ...] = ()

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_site_admin(self) -> bool:
		return self.has_role(settings.clubs_site_admin_role)


_bearer_scheme = HTTPBearer(auto_error=False)


def _split_roles(raw: object) -> Tuple[str, ...]:
	if isinstance(raw, (list, tuple)):
		return tuple(str(r).strip() for r in raw if str(r).strip())
	if isinstance(raw, str):
		return tuple(part.strip() for part in raw.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser.

	Roles can be a list claim or a comma-separated string; Cognito style
	`cognito:groups` is accepted as well.
	"""
	try:
		payload = jwt_helper.decode_access(token)
	except jwt.InvalidTokenError:
		# Normalise all decode failures to invalid_token for the API surface
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = str(payload.get("sub") or "").strip()
	email = payload.get("email")
	roles_claim = payload.get("roles") or payload.get("cognito:groups") or payload.get("role")
	return AuthenticatedUser(
		id=sub,
		email=str(email).strip().lower() if email else None,
		roles=_split_roles(roles_claim),
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_email: Optional[str] = Header(default=None, alias="X-User-Email"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow simple headers. In all other environments, headers are
	ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev():
		user_id = optional_str(x_user_id)
		if user_id:
			email = optional_str(x_user_email)
			return AuthenticatedUser(
				id=user_id,
				email=email.lower() if email else None,
				roles=_split_roles(x_user_roles),
			)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

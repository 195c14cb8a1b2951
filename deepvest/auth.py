"""Bearer-token authentication against the auth provider's HS256 access tokens.

The auth provider (Supabase GoTrue) signs access tokens with the project JWT
secret; ``sub`` is the user id.  A fresh :class:`AuthUser` is resolved for
every request and never cached between requests.
"""
from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from deepvest.errors import AuthenticationError
from deepvest.utils import parse_uuid

log = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthUser:
    id: uuid.UUID
    email: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        name = self.user_metadata.get("full_name") or self.user_metadata.get("name")
        if name:
            return str(name)
        if self.email:
            return self.email.split("@")[0]
        return "Founder"


def decode_access_token(token: str) -> AuthUser:
    """Verify *token* and return the user it was issued to."""
    secret = os.environ.get("SUPABASE_JWT_SECRET", "")
    if not secret:
        log.warning("SUPABASE_JWT_SECRET not configured, rejecting token")
        raise AuthenticationError()
    audience = os.environ.get("SUPABASE_JWT_AUDIENCE", "authenticated")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"], audience=audience)
    except JWTError as exc:
        log.info("Access token rejected: %s", exc)
        raise AuthenticationError() from exc

    user_id = parse_uuid(str(payload.get("sub", "")))
    if user_id is None:
        raise AuthenticationError()
    metadata = payload.get("user_metadata")
    return AuthUser(
        id=user_id,
        email=payload.get("email"),
        user_metadata=metadata if isinstance(metadata, dict) else {},
    )


def user_from_header(authorization: str | None) -> AuthUser | None:
    """Resolve the caller from a raw ``Authorization`` header; None if absent or invalid."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        return decode_access_token(token.strip())
    except AuthenticationError:
        return None


def user_from_request(request: Request) -> AuthUser | None:
    return user_from_header(request.headers.get("authorization"))


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthUser | None:
    if credentials is None:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError:
        return None


def require_user(user: AuthUser | None = Depends(optional_user)) -> AuthUser:
    if user is None:
        raise AuthenticationError()
    return user

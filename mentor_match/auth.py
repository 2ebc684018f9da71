"""Bearer-token authorization for admin endpoints.

`require_admin` runs once per request and hands an AdminSession to the
matcher, which does not look at tokens itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import jwt
from fastapi import Header

from .config import settings

logger = logging.getLogger(__name__)


class UnauthorizedError(Exception):
    """Raised when the caller is not an authenticated admin."""

    def __init__(self, message: str = "Unauthorized", *, authenticated: bool = False):
        super().__init__(message)
        self.authenticated = authenticated


@dataclass(frozen=True)
class AdminSession:
    """An already-validated admin caller."""
    user_id: str
    roles: frozenset[str]
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return settings.auth.admin_role in self.roles


def create_token(
    sub: str,
    roles: list[str],
    *,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.utcnow()
    expires_delta = expires_delta or timedelta(minutes=settings.auth.token_ttl_minutes)
    to_encode = {
        "sub": sub,
        "roles": list(roles),
        "iat": now,
        "exp": now + expires_delta,
    }
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.auth.jwt_secret, algorithm=settings.auth.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.auth.jwt_secret, algorithms=[settings.auth.jwt_algorithm])


def admin_session_from_token(token: str) -> AdminSession:
    """Validate a token and require the admin role.

    Raises:
        UnauthorizedError: If the token is invalid, expired, or lacks the role
    """
    try:
        data = decode_token(token)
    except jwt.PyJWTError as e:
        logger.warning(f"Token decode failed: {e}")
        raise UnauthorizedError("Invalid token") from e

    user_id = data.get("sub")
    if not user_id:
        raise UnauthorizedError("Invalid token")

    session = AdminSession(
        user_id=user_id,
        roles=frozenset(data.get("roles") or []),
        email=data.get("email"),
    )
    if not session.is_admin:
        logger.warning(f"User {user_id} attempted an admin action without the admin role")
        raise UnauthorizedError("Unauthorized", authenticated=True)
    return session


async def require_admin(authorization: str | None = Header(default=None)) -> AdminSession:
    """FastAPI dependency resolving the Authorization header to an AdminSession."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthorizedError("Missing token")
    token = authorization.split(" ", 1)[1]
    return admin_session_from_token(token)

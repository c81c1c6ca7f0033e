"""FastAPI authentication dependencies."""

from __future__ import annotations

import uuid

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.auth.jwt import verify_token
from eduplay.database import get_session
from eduplay.db.models import User
from eduplay.errors import ForbiddenError, UnauthorizedError

_bearer = HTTPBearer(auto_error=False)

TEACHER_ROLES = frozenset({"teacher", "admin"})


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Extract and verify the bearer token, return the User row.

    Raises UnauthorizedError (401) on a missing or bad token and for unknown or
    deactivated accounts.
    """
    if credentials is None:
        raise UnauthorizedError("Authentication required")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
        user_id = uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise UnauthorizedError(f"Invalid token: {e}") from e

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None or not user.is_active:
        raise UnauthorizedError("User not found")
    return user


async def require_teacher(user: User = Depends(get_current_user)) -> User:
    """Same as get_current_user but the caller must be a teacher or an admin."""
    if user.role not in TEACHER_ROLES:
        raise ForbiddenError("Teacher role required")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise ForbiddenError("Admin role required")
    return user

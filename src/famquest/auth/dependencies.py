"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
import structlog
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from famquest.auth.jwt import verify_token
from famquest.behavior.family_service import Actor
from famquest.database import get_session
from famquest.db.models import User
from famquest.errors import AuthenticationRequired

_bearer = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> Actor:
    """
    Verify the bearer JWT and return the calling family member.

    Family and role come from the stored member row, not the token, so a
    member moved between families cannot act on the old one.
    """
    if credentials is None:
        raise AuthenticationRequired("Authentication required")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise AuthenticationRequired(str(e)) from e

    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError) as e:
        raise AuthenticationRequired("Malformed token subject") from e

    user = await db.get(User, user_id)
    if user is None:
        raise AuthenticationRequired("User not found")
    structlog.contextvars.bind_contextvars(family_id=user.family_id, actor_id=user.id)
    return Actor.of(user)

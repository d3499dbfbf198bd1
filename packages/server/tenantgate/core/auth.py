"""
Identity for tenantgate requests.

The identity provider is external: callers present a signed JWT (`sub` is
the user id) or, for local development, a bare user UUID as a Bearer token.
Authorization (roles, ACLs) lives in `core.roles` and `core.acl`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import get_settings
from tenantgate.core.database import get_session
from tenantgate.core.errors import OrgError
from tenantgate_shared.schemas.common import ErrorCode

log = structlog.get_logger()
settings = get_settings()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(user_id: uuid.UUID, *, expires_delta: timedelta | None = None) -> str:
    """Create a signed identity token (used by dev tooling and tests)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def user_id_from_token(token: str) -> Optional[uuid.UUID]:
    """Resolve a Bearer token to a user id, or None if it is not valid."""
    try:
        return uuid.UUID(token)
    except ValueError:
        pass
    try:
        payload = decode_jwt(token)
        return uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        log.debug("auth.invalid_token")
        return None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_optional_user_id(
    authorization: Optional[str] = Depends(api_key_header),
) -> Optional[uuid.UUID]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return user_id_from_token(authorization[7:].strip())


async def get_current_user_id(
    user_id: Optional[uuid.UUID] = Depends(get_optional_user_id),
) -> uuid.UUID:
    if user_id is None:
        raise OrgError(ErrorCode.NOT_AUTHENTICATED)
    return user_id


@dataclass
class RequestContext:
    """The unit of work a handler runs in: one session, one caller."""

    session: AsyncSession
    user_id: uuid.UUID


async def get_request_context(
    user_id: uuid.UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> RequestContext:
    return RequestContext(session=session, user_id=user_id)

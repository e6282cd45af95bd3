"""
FastAPI Dependencies for Authentication and Authorization.

Key patterns:
1. get_current_member_id: Extracts and validates the session JWT, returns the Memberstack member id
2. get_paid_member_id: Same, plus the paid-flag gate every curriculum route sits behind
3. No global "current user" state - always pass user_id explicitly

Security model:
- JWT in the Authorization header (preferred) or the HttpOnly access_token cookie
- All domain data queries are scoped by user_id at the SQL level
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import Cookie, Depends, Header
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from navigator.config import get_settings
from navigator.db.models import Run, Thread
from navigator.db.session import get_db
from navigator.errors import bad_request, forbidden, internal_error, not_found, unauthorized
from navigator.services import lifecycle
from navigator.services.entitlement import get_user_paid_flag

settings = get_settings()

ACCESS_TOKEN_COOKIE = "access_token"


# =============================================================================
# JWT UTILITIES
# =============================================================================


def create_access_token(member_id: str) -> str:
    """
    Create a session JWT for a Memberstack member.

    Token payload contains sub (member id), iss, aud, iat and exp. Nothing
    else about the member goes into the token.
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": member_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "exp": now + timedelta(seconds=settings.access_token_ttl_seconds),
    }
    return jwt.encode(payload, settings.jwt_signing_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str | None:
    """
    Decode and validate a session JWT.

    Returns the member id if valid, None if invalid/expired/wrong issuer or audience.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_signing_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError:
        return None

    member_id = payload.get("sub")
    if not isinstance(member_id, str) or not member_id:
        return None
    return member_id


# =============================================================================
# AUTHENTICATION DEPENDENCIES
# =============================================================================


async def get_token_from_request(
    authorization: Annotated[str | None, Header()] = None,
    access_token: Annotated[str | None, Cookie()] = None,
) -> str:
    """
    Extract JWT token from request.

    Authorization: Bearer <token> wins; the access_token cookie is the fallback.
    """
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]

    if access_token:
        return access_token

    raise unauthorized()


async def get_current_member_id(
    token: Annotated[str, Depends(get_token_from_request)],
) -> str:
    """Validate the session JWT and return the member id. Raises 401."""
    member_id = decode_access_token(token)
    if member_id is None:
        raise unauthorized()
    return member_id


async def get_paid_member_id(
    member_id: Annotated[str, Depends(get_current_member_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> str:
    """Authenticated member with paid=true. Raises 403 otherwise."""
    if not await get_user_paid_flag(db, member_id):
        raise forbidden("Paid access required")
    return member_id


async def require_admin(
    member_id: Annotated[str, Depends(get_current_member_id)],
    x_paid_admin_token: Annotated[str | None, Header()] = None,
) -> str:
    """Admin member id plus a matching X-PAID-ADMIN-TOKEN header."""
    if member_id not in settings.admin_member_ids:
        raise forbidden("Admin access required")
    if not x_paid_admin_token:
        raise forbidden("Admin token required")
    if not settings.paid_admin_token:
        raise internal_error("PAID_ADMIN_TOKEN is not set")
    if not secrets.compare_digest(x_paid_admin_token, settings.paid_admin_token):
        raise forbidden("Invalid admin token")
    return member_id


# Type aliases for dependency injection
CurrentMemberId = Annotated[str, Depends(get_current_member_id)]
PaidMemberId = Annotated[str, Depends(get_paid_member_id)]
AdminMemberId = Annotated[str, Depends(require_admin)]
DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# QUERY HELPERS (enforce user scoping at query level)
# =============================================================================


async def get_active_run_or_400(db: AsyncSession, user_id: str) -> Run:
    run = await lifecycle.get_active_run(db, user_id)
    if run is None:
        raise bad_request("no active run; call /api/run/start (or /api/run/restart)")
    return run


async def get_active_thread_or_400(db: AsyncSession, run: Run) -> Thread:
    thread = await lifecycle.get_active_thread(db, run.id)
    if thread is None:
        raise bad_request("no active thread; call /api/thread/start first")
    return thread


async def get_user_thread_or_404(db: AsyncSession, thread_id: UUID, user_id: str) -> Thread:
    """Thread owned by user_id. Someone else's thread is indistinguishable from a missing one."""
    thread = await lifecycle.get_user_thread(db, thread_id, user_id)
    if thread is None:
        raise not_found("thread not found")
    return thread

"""
Authentication Routes

Endpoints:
- POST /api/auth/exchange - Exchange a Memberstack member token for a session JWT

Auth Flow:
1. Frontend logs the member in with Memberstack and receives a member token
2. Frontend POSTs the token to /api/auth/exchange
3. Backend verifies it with the Memberstack admin API
4. Backend returns a short-lived JWT (HttpOnly cookie; the body carries metadata only)

Security:
- The member token is never stored
- The JWT carries only the member id (sub) plus iss/aud/iat/exp
"""

import logging

from fastapi import APIRouter, Response

from navigator.api.deps import ACCESS_TOKEN_COOKIE, create_access_token
from navigator.config import get_settings
from navigator.errors import unauthorized
from navigator.schemas.auth import ExchangeRequest, ExchangeResponse
from navigator.services.memberstack import memberstack_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])
settings = get_settings()


@router.post("/exchange", response_model=ExchangeResponse)
async def exchange_token(request: ExchangeRequest, response: Response) -> ExchangeResponse:
    """
    Exchange a Memberstack token for a session JWT.

    401 when Memberstack rejects the token; 502 when Memberstack is unreachable.
    """
    member_id = await memberstack_service.verify_token(request.token)
    if member_id is None:
        raise unauthorized("memberstack verification failed")

    access_token = create_access_token(member_id)
    expires_in = settings.access_token_ttl_seconds

    # For cross-site deployments (web and API on different sites), use samesite="none" + secure=True
    response.set_cookie(
        key=ACCESS_TOKEN_COOKIE,
        value=access_token,
        httponly=True,
        secure=settings.cookie_cross_domain or settings.environment != "development",
        samesite="none" if settings.cookie_cross_domain else "strict",
        max_age=expires_in,
        path="/",
    )

    logger.info("Issued session for member %s", member_id)
    return ExchangeResponse(member_id=member_id, expires_in=expires_in)

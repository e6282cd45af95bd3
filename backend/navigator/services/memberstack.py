"""Memberstack token verification."""

import logging

import httpx

from navigator.config import get_settings
from navigator.errors import UpstreamError

logger = logging.getLogger(__name__)
settings = get_settings()


class MemberstackService:
    """Verifies Memberstack member tokens via the admin REST API."""

    async def verify_token(self, token: str) -> str | None:
        """
        Return the member id for a valid token, None if Memberstack rejects it.

        Network failures and timeouts raise UpstreamError.
        """
        url = f"{settings.memberstack_api_base_url.rstrip('/')}/members/verify-token"
        try:
            async with httpx.AsyncClient(timeout=settings.external_api_timeout_seconds) as client:
                resp = await client.post(
                    url,
                    json={"token": token},
                    headers={"X-API-KEY": settings.memberstack_secret_key},
                )
        except httpx.TimeoutException as e:
            logger.warning("Memberstack verify-token timed out")
            raise UpstreamError("memberstack", "Memberstack request timed out") from e
        except httpx.HTTPError as e:
            logger.warning("Memberstack verify-token failed: %s", e)
            raise UpstreamError("memberstack", "Memberstack request failed") from e

        if resp.status_code != 200:
            logger.info("Memberstack rejected token (status %d)", resp.status_code)
            return None

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamError("memberstack", "Memberstack returned non-JSON") from e

        data = body.get("data", body) if isinstance(body, dict) else None
        member_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(member_id, str) or not member_id:
            return None
        return member_id


# Singleton instance
memberstack_service = MemberstackService()

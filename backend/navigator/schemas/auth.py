"""Authentication schemas."""

from pydantic import Field

from navigator.schemas.base import BaseSchema, OkResponse


class ExchangeRequest(BaseSchema):
    """Memberstack member token to exchange for a session JWT."""

    token: str = Field(..., min_length=1, description="Memberstack member token from the frontend")


class ExchangeResponse(OkResponse):
    member_id: str
    token_type: str = "Bearer"
    expires_in: int = Field(..., description="Token expiry in seconds")

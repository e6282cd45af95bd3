"""Entitlement, checkout, and admin schemas."""

from pydantic import Field

from navigator.schemas.base import BaseSchema, OkResponse


class PaidResponse(OkResponse):
    paid: bool


class CheckoutSessionResponse(OkResponse):
    id: str
    url: str | None = None


class SetPaidRequest(BaseSchema):
    user_id: str = Field(..., min_length=1, max_length=128)
    paid: bool = True


class SetPaidResponse(OkResponse):
    user_id: str
    paid: bool

"""
Entitlement routes: paid flag, Stripe checkout and webhook, admin override.

The webhook is authenticated by its Stripe signature, not by a session JWT.
"""

import logging
import re

import stripe
from fastapi import APIRouter, Header, Request

from navigator.api.deps import AdminMemberId, CurrentMemberId, DbSession
from navigator.config import get_settings
from navigator.errors import bad_request, internal_error
from navigator.schemas.base import OkResponse
from navigator.schemas.billing import (
    CheckoutSessionResponse,
    PaidResponse,
    SetPaidRequest,
    SetPaidResponse,
)
from navigator.services import entitlement
from navigator.services.billing import billing_service, field, session_has_price

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["billing"])
settings = get_settings()

MEMBER_ID_PATTERN = re.compile(r"^mem_[a-zA-Z0-9_]+$")
CHECKOUT_MODES = ("payment", "subscription")


@router.get("/paid", response_model=PaidResponse)
async def get_paid(member_id: CurrentMemberId, db: DbSession) -> PaidResponse:
    """Whether the signed-in member has paid. Never 403s."""
    return PaidResponse(paid=await entitlement.get_user_paid_flag(db, member_id))


@router.post("/checkout/session", response_model=CheckoutSessionResponse)
async def create_checkout_session(member_id: CurrentMemberId) -> CheckoutSessionResponse:
    """Create a Stripe Checkout session for the signed-in member."""
    if not MEMBER_ID_PATTERN.match(member_id):
        raise bad_request("invalid member id")

    if not (settings.stripe_price_id and settings.checkout_success_url and settings.checkout_cancel_url):
        raise internal_error("checkout is not configured")
    if settings.stripe_checkout_mode not in CHECKOUT_MODES:
        raise internal_error("invalid STRIPE_CHECKOUT_MODE")

    session = await billing_service.create_checkout_session(member_id)
    return CheckoutSessionResponse(id=session["id"], url=session["url"])


@router.post("/stripe/webhook", response_model=OkResponse)
async def stripe_webhook(
    request: Request,
    db: DbSession,
    stripe_signature: str | None = Header(None),
) -> OkResponse:
    """
    Handle Stripe webhook events.

    Events are processed at most once (ledger keyed by event id). For
    checkout.session.completed the session is re-fetched from Stripe and the
    member is marked paid only if the payment is complete and the configured
    price is on the order.
    """
    if not stripe_signature:
        raise bad_request("missing Stripe-Signature")

    payload = await request.body()
    try:
        event = billing_service.construct_event(payload, stripe_signature)
    except stripe.SignatureVerificationError:
        raise bad_request("signature verification failed")
    except ValueError:
        raise bad_request("invalid JSON")

    event_id = field(event, "id")
    event_type = field(event, "type") or "unknown"
    if not isinstance(event_id, str) or not event_id:
        raise bad_request("event id missing")

    if await entitlement.is_event_processed(db, event_id):
        logger.info("Stripe event %s already processed", event_id)
        return OkResponse()

    if event_type == "checkout.session.completed":
        session_id = field(field(field(event, "data"), "object"), "id")
        if not session_id:
            raise bad_request("session id missing")

        session = await billing_service.retrieve_checkout_session(session_id)

        payment_status = field(session, "payment_status")
        if payment_status != "paid":
            raise bad_request("payment not paid", details={"payment_status": payment_status})

        member_id = field(session, "client_reference_id")
        if not isinstance(member_id, str) or not member_id.strip():
            raise bad_request("client_reference_id not found")

        if not session_has_price(session, settings.stripe_price_id):
            raise bad_request("price mismatch")

        await entitlement.set_user_paid(db, member_id.strip(), True)
        logger.info("Stripe event %s marked member %s paid", event_id, member_id)

    await entitlement.record_event(db, event_id, event_type)
    return OkResponse()


@router.post("/admin/set_paid", response_model=SetPaidResponse)
async def admin_set_paid(
    data: SetPaidRequest,
    admin_id: AdminMemberId,
    db: DbSession,
) -> SetPaidResponse:
    """Override a member's paid flag (admin members with the admin token only)."""
    await entitlement.set_user_paid(db, data.user_id, data.paid)
    logger.warning("Admin %s set paid=%s for %s", admin_id, data.paid, data.user_id)
    return SetPaidResponse(user_id=data.user_id, paid=data.paid)

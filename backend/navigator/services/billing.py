"""
Stripe checkout and webhook handling.

The stripe SDK is synchronous; calls run in a worker thread bounded by the
external API timeout.
"""

import asyncio
import logging
from typing import Any

import stripe

from navigator.config import get_settings
from navigator.errors import UpstreamError

logger = logging.getLogger(__name__)
settings = get_settings()

stripe.api_key = settings.stripe_secret_key
if settings.stripe_api_base_url:
    stripe.api_base = settings.stripe_api_base_url


def field(obj: Any, key: str) -> Any:
    """Key lookup that works for StripeObject and plain dicts alike."""
    if obj is None:
        return None
    try:
        return obj[key] if key in obj else None
    except TypeError:
        return None


class BillingService:
    """Checkout session creation and webhook verification."""

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=settings.external_api_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.warning("Stripe call %s timed out", getattr(fn, "__qualname__", fn))
            raise UpstreamError("stripe", "Stripe request timed out") from e
        except stripe.StripeError as e:
            logger.warning("Stripe call failed: %s", e)
            raise UpstreamError(
                "stripe",
                "Stripe request failed",
                retryable=False,
                details={"status": getattr(e, "http_status", None)},
            ) from e

    async def create_checkout_session(self, member_id: str) -> dict:
        session = await self._call(
            stripe.checkout.Session.create,
            mode=settings.stripe_checkout_mode,
            line_items=[{"price": settings.stripe_price_id, "quantity": 1}],
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
            client_reference_id=member_id,
            metadata={"member_id": member_id},
        )
        logger.info("Created checkout session %s for member %s", field(session, "id"), member_id)
        return {"id": field(session, "id"), "url": field(session, "url")}

    async def retrieve_checkout_session(self, session_id: str) -> Any:
        return await self._call(
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["line_items"],
        )

    def construct_event(self, payload: bytes, sig_header: str) -> Any:
        """
        Verify the Stripe-Signature header and parse the event.

        Raises stripe.SignatureVerificationError or ValueError.
        """
        return stripe.Webhook.construct_event(
            payload,
            sig_header,
            settings.stripe_webhook_secret,
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )


def session_has_price(session: Any, price_id: str) -> bool:
    line_items = field(field(session, "line_items"), "data") or []
    return any(field(field(item, "price"), "id") == price_id for item in line_items)


# Singleton instance
billing_service = BillingService()

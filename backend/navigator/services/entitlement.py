"""Paid-flag storage and the processed-webhook-event ledger."""

import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from navigator.db.models import StripeWebhookEvent, UserFlag

logger = logging.getLogger(__name__)


async def get_user_paid_flag(db: AsyncSession, user_id: str) -> bool:
    """Absent row and paid=false both mean no entitlement."""
    result = await db.execute(select(UserFlag.paid).where(UserFlag.user_id == user_id))
    return bool(result.scalar_one_or_none())


async def set_user_paid(db: AsyncSession, user_id: str, paid: bool = True) -> None:
    """Upsert the paid flag for a member."""
    result = await db.execute(select(UserFlag).where(UserFlag.user_id == user_id))
    flag = result.scalar_one_or_none()

    if flag is not None:
        flag.paid = paid
        await db.commit()
        return

    db.add(UserFlag(user_id=user_id, paid=paid))
    try:
        await db.commit()
    except IntegrityError:
        # Row created concurrently; apply this write on top of it
        await db.rollback()
        await db.execute(
            update(UserFlag)
            .where(UserFlag.user_id == user_id)
            .values(paid=paid, updated_at=func.now())
        )
        await db.commit()

    logger.info("Set paid=%s for user %s", paid, user_id)


async def is_event_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(
        select(StripeWebhookEvent.event_id).where(StripeWebhookEvent.event_id == event_id)
    )
    return result.scalar_one_or_none() is not None


async def record_event(db: AsyncSession, event_id: str, event_type: str) -> None:
    """Mark a webhook event processed. Recording it twice is a no-op."""
    db.add(StripeWebhookEvent(event_id=event_id, event_type=event_type or "unknown"))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Stripe event %s was already recorded", event_id)

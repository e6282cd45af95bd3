"""Encrypted card upsert: one current snapshot per (thread, kind) or (run, kind)."""

import logging
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from navigator.db.models import Card, CardKind
from navigator.services.messages import EncryptedContent

logger = logging.getLogger(__name__)


def _scope_filter(run_id: UUID, thread_id: UUID | None, kind: CardKind):
    if thread_id is not None:
        return (Card.thread_id == thread_id, Card.kind == kind.value)
    return (Card.run_id == run_id, Card.thread_id.is_(None), Card.kind == kind.value)


async def get_card(
    db: AsyncSession,
    run_id: UUID,
    kind: CardKind,
    thread_id: UUID | None = None,
) -> Card | None:
    """Card for a thread scope, or for the run scope when thread_id is None."""
    result = await db.execute(select(Card).where(*_scope_filter(run_id, thread_id, kind)))
    return result.scalar_one_or_none()


async def _overwrite(
    db: AsyncSession,
    card_id: UUID,
    content: EncryptedContent,
) -> None:
    await db.execute(
        update(Card)
        .where(Card.id == card_id)
        .values(
            ciphertext=content.ciphertext,
            iv=content.iv,
            alg=content.alg,
            version=content.version,
            kid=content.kid,
            updated_at=func.now(),
        )
    )
    await db.commit()


async def upsert_card(
    db: AsyncSession,
    *,
    run_id: UUID,
    user_id: str,
    kind: CardKind,
    content: EncryptedContent,
    thread_id: UUID | None = None,
) -> Card:
    """
    Create the card on first write, overwrite its content afterwards.

    Last writer wins. If a concurrent first write beats this one to the
    insert, this write is applied as an overwrite of that row.
    """
    existing = await get_card(db, run_id, kind, thread_id)

    if existing is not None:
        card_id = existing.id
        await _overwrite(db, card_id, content)
    else:
        card = Card(
            run_id=run_id,
            thread_id=thread_id,
            user_id=user_id,
            kind=kind.value,
            ciphertext=content.ciphertext,
            iv=content.iv,
            alg=content.alg,
            version=content.version,
            kid=content.kid,
        )
        db.add(card)
        try:
            await db.commit()
            card_id = card.id
        except IntegrityError:
            await db.rollback()
            winner = await get_card(db, run_id, kind, thread_id)
            if winner is None:
                raise
            logger.info("Card %s insert lost a race; overwriting %s", kind.value, winner.id)
            card_id = winner.id
            await _overwrite(db, card_id, content)

    result = await db.execute(
        select(Card).where(Card.id == card_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()

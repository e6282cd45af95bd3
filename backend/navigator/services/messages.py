"""
Encrypted message append and reads.

seq is computed inside the INSERT itself, so the max-seq read and the row
write are one statement. The (thread_id, seq) and (thread_id,
client_message_id) unique constraints arbitrate concurrent appends.
"""

import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from navigator.db.models import Message, MessageRole, Thread
from navigator.errors import StorageConflictError

logger = logging.getLogger(__name__)

MAX_APPEND_ATTEMPTS = 3


@dataclass(frozen=True)
class EncryptedContent:
    """Opaque client-encrypted blob. The server never looks inside."""

    ciphertext: str
    iv: str
    alg: str
    version: int
    kid: str | None = None


@dataclass(frozen=True)
class AppendResult:
    message: Message
    duplicate: bool


async def get_message_by_client_id(
    db: AsyncSession,
    thread_id: UUID,
    client_message_id: str,
) -> Message | None:
    result = await db.execute(
        select(Message).where(
            Message.thread_id == thread_id,
            Message.client_message_id == client_message_id,
        )
    )
    return result.scalar_one_or_none()


async def insert_message_with_seq(
    db: AsyncSession,
    thread: Thread,
    role: MessageRole,
    client_message_id: str,
    content: EncryptedContent,
) -> AppendResult:
    """
    Append a message to `thread` with the next seq.

    A repeated client_message_id is an idempotent replay: the stored row is
    returned with duplicate=True and no seq is consumed. Seq collisions with a
    concurrent append are retried up to MAX_APPEND_ATTEMPTS times.
    """
    thread_id, run_id, user_id = thread.id, thread.run_id, thread.user_id

    next_seq = (
        select(func.coalesce(func.max(Message.seq), 0) + 1)
        .where(Message.thread_id == thread_id)
        .scalar_subquery()
    )

    last_error = None
    for attempt in range(MAX_APPEND_ATTEMPTS):
        message_id = uuid4()
        try:
            await db.execute(
                insert(Message).values(
                    id=message_id,
                    run_id=run_id,
                    thread_id=thread_id,
                    user_id=user_id,
                    role=role.value,
                    client_message_id=client_message_id,
                    ciphertext=content.ciphertext,
                    iv=content.iv,
                    alg=content.alg,
                    version=content.version,
                    kid=content.kid,
                    seq=next_seq,
                )
            )
            await db.commit()
        except IntegrityError as exc:
            last_error = exc
            await db.rollback()

            existing = await get_message_by_client_id(db, thread_id, client_message_id)
            if existing is not None:
                logger.info(
                    "Duplicate append to thread %s (client_message_id=%s); returning seq %d",
                    thread_id, client_message_id, existing.seq,
                )
                return AppendResult(message=existing, duplicate=True)

            logger.warning(
                "Seq conflict appending to thread %s (attempt %d/%d)",
                thread_id, attempt + 1, MAX_APPEND_ATTEMPTS,
            )
            continue

        result = await db.execute(select(Message).where(Message.id == message_id))
        return AppendResult(message=result.scalar_one(), duplicate=False)

    raise StorageConflictError(
        f"could not assign seq in thread {thread_id} after {MAX_APPEND_ATTEMPTS} attempts"
    ) from last_error


async def list_messages(db: AsyncSession, thread_id: UUID, limit: int = 500) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .order_by(Message.seq.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_last_message(db: AsyncSession, thread_id: UUID) -> Message | None:
    result = await db.execute(
        select(Message)
        .where(Message.thread_id == thread_id)
        .order_by(Message.seq.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()

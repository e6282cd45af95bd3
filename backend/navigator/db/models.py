"""
SQLAlchemy 2.0 Models for the Shadow Work Navigator.

Uses modern declarative syntax with Mapped[] type annotations.
Concurrency control lives in the schema: every "at most one" rule below is a
(partial) unique index, and the service layer reconciles to the winning row
when an insert loses a race.

user_id is the Memberstack member id; there is no local users table.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from navigator.curriculum import STEP1_QUESTIONS, STEP2_SESSIONS, CurriculumPosition, position_from_columns
from navigator.db.base import Base


# =============================================================================
# ENUMS
# =============================================================================


class RunStatus(str, PyEnum):
    """Lifecycle status of a run."""

    ACTIVE = "active"
    COMPLETED = "completed"


class ThreadStatus(str, PyEnum):
    """Lifecycle status of a thread."""

    ACTIVE = "active"
    COMPLETED = "completed"


class MessageRole(str, PyEnum):
    """Author of a stored message."""

    USER = "user"
    ASSISTANT = "assistant"


class CardKind(str, PyEnum):
    """Kind of encrypted card."""

    CONTEXT_CARD = "context_card"  # thread-scoped
    STEP2_META_CARD = "step2_meta_card"  # run-scoped


_ACTIVE = text("status = 'active'")


# =============================================================================
# MODELS
# =============================================================================


class Run(Base):
    """
    One user's attempt at the full curriculum.

    At most one run per user is active; run_no counts 1, 2, 3... per user.
    """

    __tablename__ = "runs"
    __table_args__ = (
        UniqueConstraint("user_id", "run_no", name="unique_user_run_no"),
        Index(
            "idx_runs_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
        CheckConstraint("status IN ('active', 'completed')", name="valid_run_status"),
        CheckConstraint("run_no > 0", name="valid_run_no"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    run_no: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RunStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class Thread(Base):
    """
    One guided conversation within a run, addressed by a curriculum position.

    Step 1 threads carry question_no, Step 2 threads carry session_no, never both.
    """

    __tablename__ = "threads"
    __table_args__ = (
        Index(
            "idx_threads_run_question",
            "run_id", "question_no",
            unique=True,
            postgresql_where=text("step = 1"),
            sqlite_where=text("step = 1"),
        ),
        Index(
            "idx_threads_run_session",
            "run_id", "session_no",
            unique=True,
            postgresql_where=text("step = 2"),
            sqlite_where=text("step = 2"),
        ),
        Index(
            "idx_threads_one_active_per_run",
            "run_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
        Index("idx_threads_user_id", "user_id"),
        CheckConstraint(
            f"(step = 1 AND question_no BETWEEN 1 AND {STEP1_QUESTIONS} AND session_no IS NULL) "
            f"OR (step = 2 AND session_no BETWEEN 1 AND {STEP2_SESSIONS} AND question_no IS NULL)",
            name="valid_curriculum_position",
        ),
        CheckConstraint("status IN ('active', 'completed')", name="valid_thread_status"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    step: Mapped[int] = mapped_column(nullable=False)
    question_no: Mapped[Optional[int]] = mapped_column(nullable=True)  # step 1 only
    session_no: Mapped[Optional[int]] = mapped_column(nullable=True)  # step 2 only
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ThreadStatus.ACTIVE.value)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    @property
    def position(self) -> CurriculumPosition:
        return position_from_columns(self.step, self.question_no, self.session_no)


class Message(Base):
    """
    One encrypted chat turn. Append-only.

    seq is gapless per thread; client_message_id makes retries idempotent.
    The ciphertext fields are opaque to the server.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("thread_id", "client_message_id", name="unique_thread_client_message"),
        UniqueConstraint("thread_id", "seq", name="unique_thread_seq"),
        Index("idx_messages_run_id", "run_id"),
        CheckConstraint("role IN ('user', 'assistant')", name="valid_message_role"),
        CheckConstraint("seq > 0", name="valid_seq"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False
    )
    thread_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    client_message_id: Mapped[str] = mapped_column(String(128), nullable=False)

    # Encrypted content
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    iv: Mapped[str] = mapped_column(Text, nullable=False)
    alg: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    kid: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    seq: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class Card(Base):
    """
    Encrypted auxiliary note: one per (thread, kind) or, when thread_id is
    NULL, one per (run, kind). Overwritten in place on every write.
    """

    __tablename__ = "cards"
    __table_args__ = (
        Index(
            "idx_cards_thread_kind",
            "thread_id", "kind",
            unique=True,
            postgresql_where=text("thread_id IS NOT NULL"),
            sqlite_where=text("thread_id IS NOT NULL"),
        ),
        Index(
            "idx_cards_run_kind",
            "run_id", "kind",
            unique=True,
            postgresql_where=text("thread_id IS NULL"),
            sqlite_where=text("thread_id IS NULL"),
        ),
        CheckConstraint("kind IN ('context_card', 'step2_meta_card')", name="valid_card_kind"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(), primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        Uuid(), ForeignKey("runs.id", ondelete="CASCADE"), nullable=False
    )
    thread_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(), ForeignKey("threads.id", ondelete="CASCADE"), nullable=True
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)

    # Encrypted content
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    iv: Mapped[str] = mapped_column(Text, nullable=False)
    alg: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(nullable=False)
    kid: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class UserFlag(Base):
    """Per-user payment entitlement (1:1 with a member id)."""

    __tablename__ = "user_flags"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    paid: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class StripeWebhookEvent(Base):
    """Ledger of processed Stripe events; the primary key makes delivery idempotent."""

    __tablename__ = "stripe_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

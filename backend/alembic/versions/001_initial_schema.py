"""Initial schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates the Shadow Work Navigator schema:
- Tables: runs, threads, messages, cards, user_flags, stripe_webhook_events
- Partial unique indexes carrying the "at most one active" rules
- Triggers: updated_at auto-update function and triggers
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # RUNS TABLE
    # ==========================================================================
    op.create_table(
        "runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("run_no", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "run_no", name="unique_user_run_no"),
        sa.CheckConstraint("status IN ('active', 'completed')", name="valid_run_status"),
        sa.CheckConstraint("run_no > 0", name="valid_run_no"),
    )
    op.create_index("ix_runs_user_id", "runs", ["user_id"])
    op.execute("""
        CREATE UNIQUE INDEX idx_runs_one_active_per_user
        ON runs(user_id)
        WHERE status = 'active'
    """)

    # ==========================================================================
    # THREADS TABLE
    # ==========================================================================
    op.create_table(
        "threads",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("step", sa.Integer(), nullable=False),
        sa.Column("question_no", sa.Integer(), nullable=True),
        sa.Column("session_no", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), server_default="active", nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["runs.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "(step = 1 AND question_no BETWEEN 1 AND 5 AND session_no IS NULL) "
            "OR (step = 2 AND session_no BETWEEN 1 AND 30 AND question_no IS NULL)",
            name="valid_curriculum_position",
        ),
        sa.CheckConstraint("status IN ('active', 'completed')", name="valid_thread_status"),
    )
    op.create_index("idx_threads_user_id", "threads", ["user_id"])
    op.execute("""
        CREATE UNIQUE INDEX idx_threads_run_question
        ON threads(run_id, question_no)
        WHERE step = 1
    """)
    op.execute("""
        CREATE UNIQUE INDEX idx_threads_run_session
        ON threads(run_id, session_no)
        WHERE step = 2
    """)
    op.execute("""
        CREATE UNIQUE INDEX idx_threads_one_active_per_run
        ON threads(run_id)
        WHERE status = 'active'
    """)

    # ==========================================================================
    # MESSAGES TABLE (append-only)
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("thread_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("role", sa.String(16), nullable=False),
        sa.Column("client_message_id", sa.String(128), nullable=False),
        sa.Column("ciphertext", sa.Text(), nullable=False),
        sa.Column("iv", sa.Text(), nullable=False),
        sa.Column("alg", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("kid", sa.String(128), nullable=True),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["thread_id"], ["threads.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("thread_id", "client_message_id", name="unique_thread_client_message"),
        sa.UniqueConstraint("thread_id", "seq", name="unique_thread_seq"),
        sa.CheckConstraint("role IN ('user', 'assistant')", name="valid_message_role"),
        sa.CheckConstraint("seq > 0", name="valid_seq"),
    )
    op.create_index("idx_messages_run_id", "messages", ["run_id"])

    # ==========================================================================
    # CARDS TABLE
    # ==========================================================================
    op.create_table(
        "cards",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("thread_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("ciphertext", sa.Text(), nullable=False),
        sa.Column("iv", sa.Text(), nullable=False),
        sa.Column("alg", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("kid", sa.String(128), nullable=True),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["run_id"], ["runs.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["thread_id"], ["threads.id"], ondelete="CASCADE"),
        sa.CheckConstraint("kind IN ('context_card', 'step2_meta_card')", name="valid_card_kind"),
    )
    op.execute("""
        CREATE UNIQUE INDEX idx_cards_thread_kind
        ON cards(thread_id, kind)
        WHERE thread_id IS NOT NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX idx_cards_run_kind
        ON cards(run_id, kind)
        WHERE thread_id IS NULL
    """)

    # ==========================================================================
    # USER_FLAGS TABLE
    # ==========================================================================
    op.create_table(
        "user_flags",
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("paid", sa.Boolean(), server_default=sa.text("FALSE"), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # ==========================================================================
    # STRIPE_WEBHOOK_EVENTS TABLE (idempotency ledger)
    # ==========================================================================
    op.create_table(
        "stripe_webhook_events",
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(255), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.text("NOW()"), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )

    # ==========================================================================
    # UPDATED_AT TRIGGER FUNCTION
    # ==========================================================================
    op.execute("""
        CREATE OR REPLACE FUNCTION update_updated_at_column()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = NOW();
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)

    # Apply triggers to all tables with updated_at
    for table in ["runs", "threads", "cards", "user_flags"]:
        op.execute(f"""
            CREATE TRIGGER update_{table}_updated_at
                BEFORE UPDATE ON {table}
                FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
        """)


def downgrade() -> None:
    # Drop triggers
    for table in ["runs", "threads", "cards", "user_flags"]:
        op.execute(f"DROP TRIGGER IF EXISTS update_{table}_updated_at ON {table}")

    op.execute("DROP FUNCTION IF EXISTS update_updated_at_column()")

    # Drop tables in reverse dependency order
    op.drop_table("stripe_webhook_events")
    op.drop_table("user_flags")
    op.drop_table("cards")
    op.drop_table("messages")
    op.drop_table("threads")
    op.drop_table("runs")

"""Create the conversation and message tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_conversation_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create ``conversations`` and ``conversation_messages`` with their indexes.

    The partial unique index keeps at most one open conversation per
    customer and channel.
    """

    op.create_table(
        "conversations",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("industry", sa.String(length=32), nullable=False),
        sa.Column("company_id", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_agent", sa.String(length=255), nullable=True),
        sa.Column(
            "generation_failures",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "context",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.CheckConstraint(
            "status IN ('active', 'escalated', 'resolved')",
            name="ck_conversations_status",
        ),
        sa.CheckConstraint(
            "channel IN ('web', 'sms', 'whatsapp')",
            name="ck_conversations_channel",
        ),
    )
    op.create_index(
        "ix_conversations_open_customer_channel",
        "conversations",
        ["customer_id", "channel"],
        unique=True,
        postgresql_where=sa.text("status <> 'resolved'"),
    )
    op.create_index(
        "ix_conversations_company_status",
        "conversations",
        ["company_id", "status"],
    )
    op.create_index(
        "ix_conversations_last_message_at",
        "conversations",
        ["last_message_at"],
    )

    op.create_table(
        "conversation_messages",
        sa.Column("seq", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "conversation_id",
            sa.String(length=64),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("intent", sa.String(length=64), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.CheckConstraint(
            "sender IN ('customer', 'ai', 'agent', 'system')",
            name="ck_conversation_messages_sender",
        ),
    )
    op.create_index(
        "ix_conversation_messages_conversation_seq",
        "conversation_messages",
        ["conversation_id", "seq"],
    )


def downgrade() -> None:
    """Remove the message and conversation tables and related indexes."""

    op.drop_index(
        "ix_conversation_messages_conversation_seq",
        table_name="conversation_messages",
    )
    op.drop_table("conversation_messages")

    op.drop_index("ix_conversations_last_message_at", table_name="conversations")
    op.drop_index("ix_conversations_company_status", table_name="conversations")
    op.drop_index("ix_conversations_open_customer_channel", table_name="conversations")
    op.drop_table("conversations")

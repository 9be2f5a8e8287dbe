"""Initial schema: session tree, channel bindings and channel message queue

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates root sessions with their linked exchanges, the per-channel binding
with its permission mode, and the per-channel processing flag and FIFO
message queue.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("working_directory", sa.String(500), nullable=False),
        sa.Column("system_user", sa.String(100), nullable=False),
        sa.Column("user_prompt", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_sessions_session_id", "sessions", ["session_id"], unique=True)
    op.create_index("ix_sessions_updated_at", "sessions", ["updated_at"])
    op.create_index(
        "idx_sessions_working_directory", "sessions", ["working_directory"]
    )

    op.create_table(
        "exchanges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(255), nullable=False),
        sa.Column("previous_session_id", sa.String(255), nullable=True),
        sa.Column(
            "root_parent_id",
            sa.Integer(),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ai_response", sa.Text(), nullable=True),
        sa.Column("user_prompt", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("cost_units", sa.Float(), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_exchanges_session_id", "exchanges", ["session_id"], unique=True
    )
    op.create_index("ix_exchanges_root_parent_id", "exchanges", ["root_parent_id"])

    op.create_table(
        "channels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("channel_id", sa.String(255), nullable=False),
        sa.Column(
            "active_session_id",
            sa.Integer(),
            sa.ForeignKey("sessions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "active_exchange_id",
            sa.Integer(),
            sa.ForeignKey("exchanges.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "permission_mode",
            sa.String(50),
            nullable=False,
            server_default="default",
        ),
        *_timestamps(),
    )
    op.create_index("ix_channels_channel_id", "channels", ["channel_id"], unique=True)

    op.create_table(
        "channel_message_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("channel_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("message_content", sa.Text(), nullable=False),
        sa.Column("message_order", sa.Integer(), nullable=False),
        sa.Column(
            "queued_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "channel_id", "message_order", name="uq_channel_message_order"
        ),
    )
    op.create_index(
        "idx_channel_message_queue_channel_order",
        "channel_message_queue",
        ["channel_id", "message_order"],
    )
    op.create_index(
        "ix_channel_message_queue_queued_at", "channel_message_queue", ["queued_at"]
    )

    op.create_table(
        "channel_processing_state",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("channel_id", sa.String(255), nullable=False),
        sa.Column(
            "is_processing", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_user_id", sa.String(255), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_channel_processing_state_channel_id",
        "channel_processing_state",
        ["channel_id"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_table("channel_processing_state")
    op.drop_table("channel_message_queue")
    op.drop_table("channels")
    op.drop_table("exchanges")
    op.drop_table("sessions")

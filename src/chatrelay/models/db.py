"""
SQLAlchemy database models for ChatRelay.

These models represent the persisted session tree (root sessions and their
exchanges), the per-channel binding, and the per-channel message queue.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PermissionMode(str, enum.Enum):
    """Engine permission mode, scoped to a channel."""

    DEFAULT = "default"  # Standard permissions with user prompts
    ACCEPT_EDITS = "acceptEdits"  # Automatically accept file edits
    BYPASS_PERMISSIONS = "bypassPermissions"  # Bypass all permission checks
    PLAN = "plan"  # Planning mode, won't execute actions


class RootSession(Base):
    """Anchor of one conversation lineage."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    working_directory: Mapped[str] = mapped_column(String(500), nullable=False)
    system_user: Mapped[str] = mapped_column(String(100), nullable=False)
    user_prompt: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )  # Write-once: the prompt that produced the first exchange

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        index=True,
    )

    # Relationships
    exchanges: Mapped[list["Exchange"]] = relationship(
        back_populates="root",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Exchange.id",
    )

    __table_args__ = (Index("idx_sessions_working_directory", "working_directory"),)

    def __repr__(self) -> str:
        return (
            f"<RootSession(id={self.id}, session_id={self.session_id!r}, "
            f"working_directory={self.working_directory!r})>"
        )


class Exchange(Base):
    """One turn of a conversation (child session).

    ``session_id`` is the resumption token issued by the engine and doubles as
    the business identifier; ``previous_session_id`` references the preceding
    exchange by that identifier, never by storage key.
    """

    __tablename__ = "exchanges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    previous_session_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    root_parent_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ai_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_prompt: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True
    )  # Write-once: the prompt that followed this response
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cost_units: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    root: Mapped["RootSession"] = relationship(back_populates="exchanges")

    def __repr__(self) -> str:
        return (
            f"<Exchange(id={self.id}, session_id={self.session_id!r}, "
            f"root_parent_id={self.root_parent_id})>"
        )


class ChannelBinding(Base):
    """Per-channel pointer to the active root session and leaf exchange."""

    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    active_session_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True
    )
    active_exchange_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("exchanges.id", ondelete="SET NULL"), nullable=True
    )
    permission_mode: Mapped[str] = mapped_column(
        String(50), nullable=False, server_default=PermissionMode.DEFAULT.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ChannelBinding(channel_id={self.channel_id!r}, "
            f"active_session_id={self.active_session_id}, "
            f"active_exchange_id={self.active_exchange_id})>"
        )


class QueuedMessage(Base):
    """A message that arrived while its channel was busy."""

    __tablename__ = "channel_message_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    message_content: Mapped[str] = mapped_column(Text, nullable=False)
    message_order: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # FIFO sequence within the channel
    queued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    __table_args__ = (
        UniqueConstraint(
            "channel_id", "message_order", name="uq_channel_message_order"
        ),
        Index("idx_channel_message_queue_channel_order", "channel_id", "message_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueuedMessage(channel_id={self.channel_id!r}, "
            f"message_order={self.message_order})>"
        )


class ChannelProcessingState(Base):
    """Busy flag gating engine calls for one channel."""

    __tablename__ = "channel_processing_state"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    is_processing: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=false()
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_user_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    last_activity_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ChannelProcessingState(channel_id={self.channel_id!r}, "
            f"is_processing={self.is_processing})>"
        )

"""
Channel message queue service.

Serializes engine calls per channel with a durable busy flag and buffers the
messages that arrive while a channel is busy, in arrival order.
"""

import enum
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chatrelay.db.repositories.base import build_upsert
from chatrelay.exceptions import QueueRaceError
from chatrelay.models.db import ChannelProcessingState, QueuedMessage

logger = logging.getLogger(__name__)

_BUSY_COLUMNS = [
    "is_processing",
    "processing_started_at",
    "processing_user_id",
    "last_activity_at",
    "updated_at",
]


class Admission(str, enum.Enum):
    """Outcome of offering a message to a channel."""

    ADMITTED = "admitted"
    QUEUED = "queued"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChannelMessageQueue:
    """
    Database-backed per-channel gate and FIFO buffer.

    Claiming a channel is a single conditional upsert on the unique
    channel_id, so two callers racing for an idle channel cannot both win.
    Queue order numbers are arbitrated by the (channel_id, message_order)
    unique constraint.
    """

    def __init__(self, session: Session, order_retries: int = 3):
        self.session = session
        self.order_retries = max(1, order_retries)

    # ===== Processing gate =====

    def offer_or_admit(self, channel_id: str, user_id: str, text: str) -> Admission:
        """
        Admit a message for immediate processing or buffer it.

        When the channel is idle the caller becomes its owner and the message
        is not enqueued. Otherwise the message is appended to the queue.

        Args:
            channel_id: Chat channel identifier
            user_id: Sender identity
            text: Message text

        Returns:
            Admission.ADMITTED or Admission.QUEUED

        Raises:
            QueueRaceError: If no order number could be assigned
        """
        if self.try_begin_processing(channel_id, user_id):
            return Admission.ADMITTED

        order = self.enqueue(channel_id, user_id, text)
        logger.info(
            f"Channel {channel_id} busy, queued message from {user_id} at position {order}"
        )
        return Admission.QUEUED

    def try_begin_processing(self, channel_id: str, user_id: str) -> bool:
        """
        Atomically mark a channel busy if, and only if, it is idle.

        Args:
            channel_id: Chat channel identifier
            user_id: Identity starting the processing

        Returns:
            True if this caller claimed the channel
        """
        now = _utc_now()
        stmt = build_upsert(
            self.session,
            ChannelProcessingState.__table__,
            values={
                "channel_id": channel_id,
                "is_processing": True,
                "processing_started_at": now,
                "processing_user_id": user_id,
                "last_activity_at": now,
                "updated_at": now,
            },
            index_elements=["channel_id"],
            update_columns=_BUSY_COLUMNS,
            where=ChannelProcessingState.is_processing.is_(False),
        )
        claimed = self.session.execute(stmt).rowcount == 1

        if claimed:
            logger.debug(f"Channel {channel_id} claimed by {user_id}")
        return claimed

    def begin_processing(self, channel_id: str, user_id: str) -> None:
        """Mark a channel busy regardless of its current state."""
        now = _utc_now()
        stmt = build_upsert(
            self.session,
            ChannelProcessingState.__table__,
            values={
                "channel_id": channel_id,
                "is_processing": True,
                "processing_started_at": now,
                "processing_user_id": user_id,
                "last_activity_at": now,
                "updated_at": now,
            },
            index_elements=["channel_id"],
            update_columns=_BUSY_COLUMNS,
        )
        self.session.execute(stmt)
        logger.debug(f"Channel {channel_id} marked processing by {user_id}")

    def end_processing(self, channel_id: str) -> None:
        """
        Mark a channel idle and clear its owner.

        Args:
            channel_id: Chat channel identifier
        """
        now = _utc_now()
        self.session.execute(
            update(ChannelProcessingState)
            .where(ChannelProcessingState.channel_id == channel_id)
            .values(
                is_processing=False,
                processing_user_id=None,
                last_activity_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        logger.debug(f"Channel {channel_id} processing ended")

    def touch(self, channel_id: str) -> None:
        """
        Restart the stale clock of a busy channel without changing its owner.

        Called before each exchange of a claim, so a claim spanning several
        follow-up exchanges is only reaped when a single exchange overruns.
        Idle channels are left untouched.
        """
        now = _utc_now()
        self.session.execute(
            update(ChannelProcessingState)
            .where(
                ChannelProcessingState.channel_id == channel_id,
                ChannelProcessingState.is_processing.is_(True),
            )
            .values(processing_started_at=now, last_activity_at=now)
            .execution_options(synchronize_session=False)
        )

    def is_processing(self, channel_id: str) -> bool:
        """Check whether a channel currently has an exchange in flight."""
        state = self.get_processing_state(channel_id)
        return bool(state and state.is_processing)

    def get_processing_state(self, channel_id: str) -> Optional[ChannelProcessingState]:
        """
        Get the processing state row of a channel.

        Returns:
            ChannelProcessingState or None if the channel was never claimed
        """
        return (
            self.session.query(ChannelProcessingState)
            .filter(ChannelProcessingState.channel_id == channel_id)
            .populate_existing()
            .first()
        )

    def reap_stale(self, timeout: timedelta) -> int:
        """
        Clear busy flags held for longer than a timeout.

        This handles cases where the process crashed mid-exchange and left a
        channel wedged.

        Args:
            timeout: Age after which a busy flag is considered stale

        Returns:
            Number of channels released
        """
        threshold = _utc_now() - timeout
        result = self.session.execute(
            update(ChannelProcessingState)
            .where(
                ChannelProcessingState.is_processing.is_(True),
                ChannelProcessingState.processing_started_at < threshold,
            )
            .values(is_processing=False, processing_user_id=None)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount > 0:
            logger.warning(f"Released {result.rowcount} stale channel processing flags")

        return result.rowcount

    # ===== Buffered messages =====

    def enqueue(self, channel_id: str, user_id: str, text: str) -> int:
        """
        Append a message to a channel's queue.

        The order number is max(order) + 1 within the channel, starting at 1.
        A concurrent enqueue that takes the same number makes the insert fail
        on the unique constraint; the insert is then retried with a fresh
        number inside its own savepoint.

        Returns:
            The order number assigned to the message

        Raises:
            QueueRaceError: If every attempt collided
        """
        for attempt in range(1, self.order_retries + 1):
            order = self._next_order(channel_id)
            try:
                with self.session.begin_nested():
                    self.session.add(
                        QueuedMessage(
                            channel_id=channel_id,
                            user_id=user_id,
                            message_content=text,
                            message_order=order,
                        )
                    )
            except IntegrityError:
                logger.warning(
                    f"Queue order {order} for channel {channel_id} taken concurrently "
                    f"(attempt {attempt}/{self.order_retries})"
                )
                continue

            logger.debug(f"Enqueued message {order} for channel {channel_id}")
            return order

        raise QueueRaceError(channel_id, self.order_retries)

    def _next_order(self, channel_id: str) -> int:
        current = (
            self.session.query(func.max(QueuedMessage.message_order))
            .filter(QueuedMessage.channel_id == channel_id)
            .scalar()
        )
        return (current or 0) + 1

    def drain_queue(self, channel_id: str) -> List[str]:
        """
        Remove and return every queued message of a channel, oldest first.

        Only the rows that were read are deleted, so a message enqueued after
        the read stays queued for the next drain.

        Args:
            channel_id: Chat channel identifier

        Returns:
            Message texts in order
        """
        entries = (
            self.session.query(QueuedMessage)
            .filter(QueuedMessage.channel_id == channel_id)
            .order_by(QueuedMessage.message_order)
            .all()
        )
        if not entries:
            return []

        messages = [entry.message_content for entry in entries]
        self.session.execute(
            delete(QueuedMessage)
            .where(QueuedMessage.id.in_([entry.id for entry in entries]))
            .execution_options(synchronize_session="fetch")
        )

        logger.info(f"Drained {len(messages)} queued messages for channel {channel_id}")
        return messages

    def queue_count(self, channel_id: str) -> int:
        """Number of messages waiting in a channel's queue."""
        return (
            self.session.query(func.count(QueuedMessage.id))
            .filter(QueuedMessage.channel_id == channel_id)
            .scalar()
            or 0
        )

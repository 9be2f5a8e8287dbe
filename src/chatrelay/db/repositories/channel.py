"""
Channel binding repository.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from chatrelay.db.repositories.base import BaseRepository
from chatrelay.exceptions import InvalidPermissionMode
from chatrelay.models.db import ChannelBinding, PermissionMode

logger = logging.getLogger(__name__)


def parse_permission_mode(mode: str) -> PermissionMode:
    """
    Validate a permission mode string.

    Raises:
        InvalidPermissionMode: If the mode is not one of PermissionMode
    """
    try:
        return PermissionMode(mode)
    except ValueError:
        raise InvalidPermissionMode(mode) from None


class ChannelRepository(BaseRepository[ChannelBinding]):
    """Repository for ChannelBinding model."""

    def __init__(self, session: Session):
        super().__init__(ChannelBinding, session)

    def get_binding(self, channel_id: str) -> Optional[ChannelBinding]:
        """
        Get the binding for a channel.

        Args:
            channel_id: Chat channel identifier

        Returns:
            ChannelBinding or None if the channel was never used
        """
        return (
            self.session.query(ChannelBinding)
            .filter(ChannelBinding.channel_id == channel_id)
            .first()
        )

    def bind(
        self,
        channel_id: str,
        root_id: Optional[int],
        exchange_id: Optional[int],
    ) -> ChannelBinding:
        """
        Point a channel at a root session and leaf exchange (atomic upsert).

        Creates the binding on first use; otherwise overwrites both pointers in
        the same statement. The channel's permission mode is left untouched.

        Args:
            channel_id: Chat channel identifier
            root_id: Storage identifier of the root session
            exchange_id: Storage identifier of the leaf exchange, or None when
                the root has no exchanges yet

        Returns:
            The up-to-date ChannelBinding
        """
        self._upsert(
            values={
                "channel_id": channel_id,
                "active_session_id": root_id,
                "active_exchange_id": exchange_id,
                "updated_at": datetime.now(timezone.utc),
            },
            index_elements=["channel_id"],
            update_columns=["active_session_id", "active_exchange_id", "updated_at"],
        )
        binding = self.get_binding(channel_id)
        # The upsert bypasses the identity map; reload pointer columns
        self.session.refresh(binding)

        logger.debug(
            f"Channel {channel_id} bound to root={root_id}, exchange={exchange_id}"
        )
        return binding

    def set_mode(self, channel_id: str, mode: str) -> ChannelBinding:
        """
        Set the permission mode of a channel, creating the binding if needed.

        Raises:
            InvalidPermissionMode: If mode is unknown
        """
        permission = parse_permission_mode(mode)
        self._upsert(
            values={
                "channel_id": channel_id,
                "permission_mode": permission.value,
                "updated_at": datetime.now(timezone.utc),
            },
            index_elements=["channel_id"],
            update_columns=["permission_mode", "updated_at"],
        )
        binding = self.get_binding(channel_id)
        self.session.refresh(binding)
        logger.info(f"Channel {channel_id} permission mode set to {permission.value}")
        return binding

    def get_mode(self, channel_id: str) -> PermissionMode:
        """Get the permission mode of a channel (default when unbound)."""
        binding = self.get_binding(channel_id)
        if binding is None:
            return PermissionMode.DEFAULT
        return parse_permission_mode(binding.permission_mode)

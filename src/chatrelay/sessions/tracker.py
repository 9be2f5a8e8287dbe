"""
Channel state tracker.

Keeps each chat channel pointed at one root session and its leaf exchange,
and owns the channel-scoped permission mode.
"""

import logging
from typing import Optional, Tuple

from chatrelay.db.connection import SessionFactory, SessionLocal, unit_of_work
from chatrelay.db.repositories.channel import ChannelRepository
from chatrelay.db.repositories.session_tree import SessionTreeRepository
from chatrelay.exceptions import SessionNotFound
from chatrelay.models.db import PermissionMode
from chatrelay.models.records import (
    ChannelBindingRecord,
    ExchangeRecord,
    RootSessionRecord,
)
from chatrelay.sessions.cache import SessionCache

logger = logging.getLogger(__name__)

Resolution = Tuple[RootSessionRecord, Optional[ExchangeRecord]]


class ChannelStateTracker:
    """Channel-to-session binding over the store and the session cache."""

    def __init__(
        self,
        cache: Optional[SessionCache] = None,
        session_factory: SessionFactory = SessionLocal,
    ):
        self.session_factory = session_factory
        self.cache = cache or SessionCache(session_factory)

    def get_binding(self, channel_id: str) -> Optional[ChannelBindingRecord]:
        """Get the binding of a channel, or None if it was never used."""
        with unit_of_work(self.session_factory, "get_binding") as session:
            binding = ChannelRepository(session).get_binding(channel_id)
            return ChannelBindingRecord.from_model(binding) if binding else None

    def bind(
        self,
        channel_id: str,
        root_id: int,
        exchange_id: Optional[int] = None,
    ) -> ChannelBindingRecord:
        """Point a channel at a root session and its leaf exchange."""
        with unit_of_work(self.session_factory, "bind") as session:
            binding = ChannelRepository(session).bind(channel_id, root_id, exchange_id)
            return ChannelBindingRecord.from_model(binding)

    def resolve_or_create(
        self, channel_id: str, identity: str, context: str
    ) -> Resolution:
        """
        Resolve the active conversation of a channel, creating one if needed.

        A binding whose root no longer exists is treated like a missing
        binding: a new root session is created and bound.

        Args:
            channel_id: Chat channel identifier
            identity: Originating identity for a new root session
            context: Working context for a new root session

        Returns:
            Tuple of (root session, leaf exchange or None)
        """
        binding = self.get_binding(channel_id)
        if binding is not None and binding.active_session_id is not None:
            root = self.cache.get_by_numeric_id(binding.active_session_id)
            if root is not None:
                return root, self._load_leaf(root.id, binding.active_exchange_id)
            logger.warning(
                f"Channel {channel_id} bound to missing root "
                f"{binding.active_session_id}, starting a new session"
            )

        root = self.start_new(channel_id, identity, context)
        return root, None

    def _load_leaf(
        self, root_id: int, exchange_id: Optional[int]
    ) -> Optional[ExchangeRecord]:
        with unit_of_work(self.session_factory, "find_leaf") as session:
            repo = SessionTreeRepository(session)
            exchange = repo.get_exchange(exchange_id) if exchange_id else None
            if exchange is None or exchange.root_parent_id != root_id:
                exchange = repo.find_leaf(root_id)
            return ExchangeRecord.from_model(exchange) if exchange else None

    def start_new(self, channel_id: str, identity: str, context: str) -> RootSessionRecord:
        """
        Create a new root session and bind the channel to it.

        Returns:
            The new root session
        """
        with unit_of_work(self.session_factory, "create_root") as session:
            root = SessionTreeRepository(session).create_root(context, identity)
            ChannelRepository(session).bind(channel_id, root.id, None)
            record = RootSessionRecord.from_model(root)

        logger.info(
            f"Channel {channel_id} started root session {record.session_id} "
            f"in {context}"
        )
        return record

    def switch_to(self, channel_id: str, target_session_id: str) -> Resolution:
        """
        Rebind a channel to an existing conversation.

        The target may identify a root session or any exchange under one; it
        is validated against the store, never the cache. The stored leaf is
        recomputed so the next message resumes from the newest exchange.

        Returns:
            Tuple of (root session, leaf exchange or None)

        Raises:
            SessionNotFound: If the identifier does not resolve; the binding
                is left untouched
        """
        with unit_of_work(self.session_factory, "switch_to") as session:
            repo = SessionTreeRepository(session)
            root = repo.get_root_by_session_id(target_session_id)
            if root is None:
                exchange = repo.get_exchange_by_session_id(target_session_id)
                if exchange is not None:
                    root = repo.get_root_by_id(exchange.root_parent_id)
            if root is None:
                raise SessionNotFound(target_session_id)

            leaf = repo.find_leaf(root.id)
            ChannelRepository(session).bind(
                channel_id, root.id, leaf.id if leaf else None
            )
            resolution = (
                RootSessionRecord.from_model(root),
                ExchangeRecord.from_model(leaf) if leaf else None,
            )

        self.cache.invalidate(resolution[0].id)
        logger.info(
            f"Channel {channel_id} switched to root session "
            f"{resolution[0].session_id} (target {target_session_id})"
        )
        return resolution

    def set_mode(self, channel_id: str, mode: str) -> PermissionMode:
        """
        Set the permission mode of a channel.

        Raises:
            InvalidPermissionMode: If mode is unknown
        """
        with unit_of_work(self.session_factory, "set_mode") as session:
            binding = ChannelRepository(session).set_mode(channel_id, mode)
            return PermissionMode(binding.permission_mode)

    def get_mode(self, channel_id: str) -> PermissionMode:
        with unit_of_work(self.session_factory, "get_mode") as session:
            return ChannelRepository(session).get_mode(channel_id)

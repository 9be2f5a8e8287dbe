"""
Message relay service.

Routes chat messages for a channel to the reasoning engine, one exchange at
a time per channel:

1. Admission: claim the channel or queue the message behind the exchange in
   flight.
2. Resolution: find (or create) the channel's conversation and its leaf.
3. Engine call: under the conversation's lock, resume from the leaf.
4. Commit: record the prompt, append the exchange and advance the binding in
   one transaction.
5. Follow-ups: messages that queued meanwhile are combined into the next
   exchange before the channel is released.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from chatrelay.config import settings
from chatrelay.db.connection import SessionFactory, SessionLocal, unit_of_work
from chatrelay.db.repositories.channel import ChannelRepository
from chatrelay.db.repositories.session_tree import SessionTreeRepository
from chatrelay.engine.base import ReasoningEngine
from chatrelay.exceptions import (
    ChatRelayError,
    EngineError,
    SessionNotFound,
    StorageError,
)
from chatrelay.models.db import PermissionMode
from chatrelay.models.records import (
    ConversationChain,
    ExchangeRecord,
    RootSessionRecord,
)
from chatrelay.queue.channel_queue import Admission, ChannelMessageQueue
from chatrelay.queue.combiner import combine_messages
from chatrelay.sessions.cache import SessionCache
from chatrelay.sessions.locks import SessionLockRegistry
from chatrelay.sessions.tracker import ChannelStateTracker

logger = logging.getLogger(__name__)

REPLY_SEPARATOR = "\n\n"


@dataclass(frozen=True)
class SessionSummary:
    """Root session listing entry."""

    session_id: str
    working_directory: str
    system_user: str
    message_count: int
    root: RootSessionRecord


@dataclass(frozen=True)
class ChannelSessionInfo:
    """Current state of one channel."""

    channel_id: str
    mode: PermissionMode
    root: Optional[RootSessionRecord]
    leaf: Optional[ExchangeRecord]
    message_count: int
    queued_messages: int
    is_processing: bool


def format_reply(
    response: str, mode: PermissionMode, resumption_token: str, working_directory: str
) -> str:
    """Append the mode/session/working-directory footer to an engine response."""
    return (
        f"{response}\n\n_Mode: `{mode.value}`, Session: `{resumption_token}`, "
        f"Working Dir: `{working_directory}`_"
    )


def format_failure(error: ChatRelayError) -> str:
    """Render an error as text for the channel."""
    if isinstance(error, EngineError):
        return f"❌ Engine request failed: {error}"
    if isinstance(error, SessionNotFound):
        return f"❌ {error}"
    return f"❌ Failed to process message: {error}"


class MessageRelay:
    """Serializes chat messages per channel and relays them to one engine."""

    def __init__(
        self,
        engine: ReasoningEngine,
        session_factory: SessionFactory = SessionLocal,
        cache: Optional[SessionCache] = None,
        tracker: Optional[ChannelStateTracker] = None,
        locks: Optional[SessionLockRegistry] = None,
        working_directory: Optional[str] = None,
        engine_timeout: Optional[float] = None,
        order_retries: Optional[int] = None,
    ):
        self.engine = engine
        self.session_factory = session_factory
        self.cache = cache or SessionCache(session_factory)
        self.tracker = tracker or ChannelStateTracker(self.cache, session_factory)
        self.locks = locks or SessionLockRegistry()
        self.working_directory = working_directory or settings.working_directory
        self.engine_timeout = (
            engine_timeout
            if engine_timeout is not None
            else settings.engine_timeout_seconds
        )
        self.order_retries = (
            order_retries if order_retries is not None else settings.queue_order_retries
        )

    # ===== Message handling =====

    def handle_incoming(self, channel_id: str, sender_id: str, text: str) -> Optional[str]:
        """
        Handle one inbound message.

        Args:
            channel_id: Chat channel identifier
            sender_id: Sender identity
            text: Message text

        Returns:
            None if the message was queued behind an exchange in flight,
            otherwise the formatted reply (followed by the replies to any
            messages that were combined into follow-up exchanges). Failures
            are returned as user-visible text.
        """
        try:
            admission = self._offer(channel_id, sender_id, text)
        except ChatRelayError as e:
            logger.error(
                f"Could not admit message for channel {channel_id}: {e}", exc_info=True
            )
            return format_failure(e)

        if admission is Admission.ADMITTED:
            replies = self._serve(channel_id, sender_id, text)
        else:
            # The owner may have released the channel before our message landed
            replies = []
            if self._reclaim_backlog(channel_id, sender_id):
                replies = self._serve(channel_id, sender_id, None)

        return REPLY_SEPARATOR.join(replies) if replies else None

    def _offer(self, channel_id: str, sender_id: str, text: str) -> Admission:
        with unit_of_work(self.session_factory, "offer_or_admit") as session:
            return ChannelMessageQueue(session, self.order_retries).offer_or_admit(
                channel_id, sender_id, text
            )

    def _serve(
        self, channel_id: str, sender_id: str, message: Optional[str]
    ) -> List[str]:
        replies: List[str] = []
        pending = message
        while True:
            replies.extend(self._process_admitted(channel_id, sender_id, pending))
            pending = None
            if not self._reclaim_backlog(channel_id, sender_id):
                return replies

    def _process_admitted(
        self, channel_id: str, sender_id: str, message: Optional[str]
    ) -> List[str]:
        """Run exchanges until the channel's queue is empty, then release it."""
        replies: List[str] = []
        pending = message
        try:
            while True:
                queued = self._drain(channel_id)
                if pending is None:
                    if not queued:
                        break
                    pending, queued = queued[0], queued[1:]

                prompt = combine_messages(pending, queued)
                pending = None
                try:
                    self._touch(channel_id)
                    replies.append(self._run_turn(channel_id, sender_id, prompt))
                except ChatRelayError as e:
                    logger.error(
                        f"Exchange failed for channel {channel_id}: {e}", exc_info=True
                    )
                    replies.append(format_failure(e))
                    break
        except ChatRelayError as e:
            logger.error(
                f"Could not drain queue for channel {channel_id}: {e}", exc_info=True
            )
            replies.append(format_failure(e))
        finally:
            self._end(channel_id)
        return replies

    def _run_turn(self, channel_id: str, sender_id: str, prompt: str) -> str:
        root, _ = self.tracker.resolve_or_create(
            channel_id, sender_id, self.working_directory
        )
        mode = self.tracker.get_mode(channel_id)

        with self.locks.hold(root.id):
            # Another channel bound to this root may have advanced it
            leaf = self._find_leaf(root.id)
            resumption_token = leaf.session_id if leaf else None

            result = self.engine.invoke(
                prompt,
                resumption_token,
                root.working_directory,
                mode,
                self.engine_timeout,
            )

            with unit_of_work(self.session_factory, "append_exchange") as session:
                repo = SessionTreeRepository(session)
                row = repo.get_root_by_id(root.id)
                if row is None:
                    raise SessionNotFound(root.session_id)
                if repo.get_exchange_by_session_id(result.resumption_token) is not None:
                    raise EngineError(
                        f"Engine reused resumption token {result.resumption_token}"
                    )
                exchange = repo.append_turn(
                    row,
                    prompt,
                    result.response_text,
                    result.resumption_token,
                    result.cost_units,
                )
                ChannelRepository(session).bind(channel_id, root.id, exchange.id)

        self.cache.invalidate(root.id)
        logger.info(
            f"Exchange {result.resumption_token} appended to root {root.session_id} "
            f"for channel {channel_id} (cost={result.cost_units})"
        )
        return format_reply(
            result.response_text, mode, result.resumption_token, root.working_directory
        )

    def _find_leaf(self, root_id: int) -> Optional[ExchangeRecord]:
        with unit_of_work(self.session_factory, "find_leaf") as session:
            leaf = SessionTreeRepository(session).find_leaf(root_id)
            return ExchangeRecord.from_model(leaf) if leaf else None

    def _drain(self, channel_id: str) -> List[str]:
        with unit_of_work(self.session_factory, "drain_queue") as session:
            return ChannelMessageQueue(session).drain_queue(channel_id)

    def _touch(self, channel_id: str) -> None:
        with unit_of_work(self.session_factory, "touch") as session:
            ChannelMessageQueue(session).touch(channel_id)

    def _end(self, channel_id: str) -> None:
        try:
            with unit_of_work(self.session_factory, "end_processing") as session:
                ChannelMessageQueue(session).end_processing(channel_id)
        except StorageError as e:
            # Left busy; the reaper releases it after the stale timeout
            logger.error(f"Could not release channel {channel_id}: {e}", exc_info=True)

    def _reclaim_backlog(self, channel_id: str, sender_id: str) -> bool:
        """Claim an idle channel that still has queued messages."""
        try:
            with unit_of_work(self.session_factory, "reclaim_backlog") as session:
                queue = ChannelMessageQueue(session)
                if queue.queue_count(channel_id) == 0:
                    return False
                return queue.try_begin_processing(channel_id, sender_id)
        except StorageError as e:
            logger.error(
                f"Could not check backlog for channel {channel_id}: {e}", exc_info=True
            )
            return False

    # ===== Session management =====

    def list_recent(self, limit: Optional[int] = None) -> List[SessionSummary]:
        """List root sessions, most recently updated first."""
        with unit_of_work(self.session_factory, "list_recent") as session:
            repo = SessionTreeRepository(session)
            roots = repo.list_recent(limit or settings.session_list_limit)
            return [self._summarize(repo, root) for root in roots]

    def list_distinct_contexts(self, limit: Optional[int] = None) -> List[str]:
        """List the working directories that have sessions, alphabetically."""
        with unit_of_work(self.session_factory, "list_distinct_contexts") as session:
            return SessionTreeRepository(session).list_distinct_contexts(
                limit or settings.session_list_limit
            )

    def list_by_context(
        self, working_directory: str, limit: Optional[int] = None
    ) -> List[SessionSummary]:
        """List root sessions of one working directory, most recent first."""
        with unit_of_work(self.session_factory, "list_by_context") as session:
            repo = SessionTreeRepository(session)
            roots = repo.list_by_context(
                working_directory, limit or settings.session_list_limit
            )
            return [self._summarize(repo, root) for root in roots]

    @staticmethod
    def _summarize(repo: SessionTreeRepository, root) -> SessionSummary:
        return SessionSummary(
            session_id=root.session_id,
            working_directory=root.working_directory,
            system_user=root.system_user,
            message_count=repo.count_exchanges(root.id),
            root=RootSessionRecord.from_model(root),
        )

    def switch_to(
        self, channel_id: str, target_session_id: str
    ) -> Tuple[RootSessionRecord, Optional[ExchangeRecord]]:
        """
        Rebind a channel to an existing root session or exchange.

        Raises:
            SessionNotFound: If the identifier does not resolve
        """
        return self.tracker.switch_to(channel_id, target_session_id)

    def start_new_session(
        self,
        channel_id: str,
        sender_id: str,
        working_directory: Optional[str] = None,
    ) -> RootSessionRecord:
        """Start a fresh conversation on a channel."""
        return self.tracker.start_new(
            channel_id, sender_id, working_directory or self.working_directory
        )

    def set_mode(self, channel_id: str, mode: str) -> PermissionMode:
        """
        Set the permission mode of a channel.

        Raises:
            InvalidPermissionMode: If mode is unknown
        """
        return self.tracker.set_mode(channel_id, mode)

    def session_info(self, channel_id: str) -> ChannelSessionInfo:
        """Describe the conversation and queue state of a channel."""
        with unit_of_work(self.session_factory, "session_info") as session:
            binding = ChannelRepository(session).get_binding(channel_id)
            repo = SessionTreeRepository(session)
            queue = ChannelMessageQueue(session)

            root = leaf = None
            message_count = 0
            if binding is not None and binding.active_session_id is not None:
                root_row = repo.get_root_by_id(binding.active_session_id)
                if root_row is not None:
                    root = RootSessionRecord.from_model(root_row)
                    leaf_row = repo.find_leaf(root_row.id)
                    leaf = ExchangeRecord.from_model(leaf_row) if leaf_row else None
                    message_count = repo.count_exchanges(root_row.id)

            return ChannelSessionInfo(
                channel_id=channel_id,
                mode=ChannelRepository(session).get_mode(channel_id),
                root=root,
                leaf=leaf,
                message_count=message_count,
                queued_messages=queue.queue_count(channel_id),
                is_processing=queue.is_processing(channel_id),
            )

    def get_chain(self, session_id: str) -> Tuple[RootSessionRecord, ConversationChain]:
        """
        Load a root session and its full exchange chain.

        Raises:
            SessionNotFound: If the root session does not exist
        """
        root = self.cache.get_by_session_id(session_id)
        if root is None:
            raise SessionNotFound(session_id)
        return root, self.cache.get_chain(root.id)

    def delete_session(self, session_id: str) -> None:
        """
        Delete a root session and its exchanges.

        Raises:
            SessionNotFound: If the root session does not exist
        """
        with unit_of_work(self.session_factory, "delete_root") as session:
            repo = SessionTreeRepository(session)
            root = repo.get_root_by_session_id(session_id)
            root_id = root.id if root else None
            repo.delete_root(session_id)

        self.cache.invalidate(session_id)
        if root_id is not None:
            self.cache.invalidate(root_id)
            self.locks.discard(root_id)

"""
Session tree repository.

Translates rows of the sessions/exchanges tables into conversation-tree
operations:
- Root session creation and lookup
- Appending exchanges to a root's linked list
- Leaf lookup and full chain reconstruction
- Listing sessions for the session-management commands
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from chatrelay.db.repositories.base import BaseRepository
from chatrelay.exceptions import PromptAlreadyRecorded, SessionNotFound, StorageError
from chatrelay.models.db import ChannelBinding, Exchange, RootSession

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionTreeRepository(BaseRepository[RootSession]):
    """Repository for root sessions and their exchanges."""

    def __init__(self, session: Session):
        super().__init__(RootSession, session)

    # ===== Root sessions =====

    def create_root(self, working_directory: str, system_user: str) -> RootSession:
        """
        Create a new root session with an unset prompt.

        Args:
            working_directory: Working context the conversation is bound to
            system_user: Originating identity

        Returns:
            The new RootSession, including its storage identifier
        """
        root = self.create(
            session_id=str(uuid.uuid4()),
            working_directory=working_directory,
            system_user=system_user,
            user_prompt=None,
        )
        logger.debug(f"Root session created: {root.session_id} (id={root.id})")
        return root

    def get_root_by_session_id(self, session_id: str) -> Optional[RootSession]:
        """
        Get a root session by its business identifier.

        Args:
            session_id: Root session identifier

        Returns:
            RootSession or None
        """
        return (
            self.session.query(RootSession)
            .filter(RootSession.session_id == session_id)
            .first()
        )

    def get_root_by_id(self, id: int) -> Optional[RootSession]:
        """Get a root session by its storage identifier."""
        return self.get(id)

    def record_first_prompt(self, session_id: str, prompt: str) -> None:
        """
        Set a root session's prompt, exactly once.

        The write is a conditional update that only succeeds while the prompt
        is still unset.

        Raises:
            SessionNotFound: If the root does not exist
            PromptAlreadyRecorded: If the prompt was already set
        """
        result = self.session.execute(
            update(RootSession)
            .where(
                RootSession.session_id == session_id,
                RootSession.user_prompt.is_(None),
            )
            .values(user_prompt=prompt, updated_at=_utc_now())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            if self.get_root_by_session_id(session_id) is None:
                raise SessionNotFound(session_id)
            raise PromptAlreadyRecorded(session_id)

    def list_recent(self, limit: int = 10) -> List[RootSession]:
        """
        List root sessions, most recently updated first.

        Args:
            limit: Maximum number of sessions

        Returns:
            List of root sessions
        """
        return (
            self.session.query(RootSession)
            .order_by(RootSession.updated_at.desc(), RootSession.id.desc())
            .limit(limit)
            .all()
        )

    def list_distinct_contexts(self, limit: int = 10) -> List[str]:
        """
        List distinct working directories, alphabetically.

        Args:
            limit: Maximum number of directories

        Returns:
            List of working directory strings
        """
        rows = (
            self.session.query(RootSession.working_directory)
            .distinct()
            .order_by(RootSession.working_directory)
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    def list_by_context(self, working_directory: str, limit: int = 10) -> List[RootSession]:
        """
        List root sessions bound to one working directory, most recent first.

        Args:
            working_directory: Working context to match exactly
            limit: Maximum number of sessions

        Returns:
            List of root sessions
        """
        return (
            self.session.query(RootSession)
            .filter(RootSession.working_directory == working_directory)
            .order_by(RootSession.updated_at.desc(), RootSession.id.desc())
            .limit(limit)
            .all()
        )

    def delete_root(self, session_id: str) -> None:
        """
        Delete a root session and every exchange under it.

        Channel bindings pointing at the root are cleared.

        Raises:
            SessionNotFound: If the root does not exist
        """
        root = self.get_root_by_session_id(session_id)
        if root is None:
            raise SessionNotFound(session_id)

        root_id = root.id
        self.session.query(ChannelBinding).filter(
            ChannelBinding.active_session_id == root_id
        ).update(
            {
                ChannelBinding.active_session_id: None,
                ChannelBinding.active_exchange_id: None,
            },
            synchronize_session="fetch",
        )
        self.session.query(Exchange).filter(Exchange.root_parent_id == root_id).delete(
            synchronize_session="fetch"
        )
        self.session.query(RootSession).filter(RootSession.id == root_id).delete(
            synchronize_session="fetch"
        )
        self.session.flush()

        logger.info(f"Deleted root session {session_id} and its exchanges (id={root_id})")

    # ===== Exchanges =====

    def get_exchange_by_session_id(self, session_id: str) -> Optional[Exchange]:
        """Get an exchange by its business identifier (resumption token)."""
        return (
            self.session.query(Exchange)
            .filter(Exchange.session_id == session_id)
            .first()
        )

    def get_exchange(self, id: int) -> Optional[Exchange]:
        """Get an exchange by its storage identifier."""
        return self.session.get(Exchange, id)

    def append_exchange(
        self,
        root_id: int,
        previous_session_id: Optional[str],
        ai_response: str,
        user_prompt: Optional[str] = None,
        *,
        resumption_token: str,
        cost_units: Optional[float] = None,
        summary: Optional[str] = None,
    ) -> Exchange:
        """
        Append an exchange to a root session.

        Args:
            root_id: Storage identifier of the owning root session
            previous_session_id: Business identifier of the preceding exchange,
                or None for the first exchange under the root
            ai_response: Text generated by the engine
            user_prompt: Prompt that followed this response (normally None)
            resumption_token: Token issued by the engine; becomes the
                exchange's business identifier
            cost_units: Cost reported by the engine
            summary: Optional short summary

        Returns:
            The new Exchange, including its generated identifier

        Raises:
            StorageError: If the preceding exchange does not belong to the root
        """
        if previous_session_id is not None:
            previous = self.get_exchange_by_session_id(previous_session_id)
            if previous is None or previous.root_parent_id != root_id:
                raise StorageError(
                    "append_exchange",
                    ValueError(
                        f"Preceding exchange {previous_session_id} is not under root {root_id}"
                    ),
                )

        exchange = Exchange(
            session_id=resumption_token,
            previous_session_id=previous_session_id,
            root_parent_id=root_id,
            ai_response=ai_response,
            user_prompt=user_prompt,
            summary=summary,
            cost_units=cost_units,
        )
        self.session.add(exchange)
        self.session.flush()
        self.session.refresh(exchange)

        # Touch the root so recency listings reflect activity
        self.session.execute(
            update(RootSession)
            .where(RootSession.id == root_id)
            .values(updated_at=_utc_now())
            .execution_options(synchronize_session=False)
        )

        logger.debug(
            f"Exchange appended: {exchange.session_id} "
            f"(root_parent_id={root_id}, previous={previous_session_id})"
        )
        return exchange

    def record_next_prompt(self, session_id: str, prompt: str) -> None:
        """
        Set the prompt that followed an exchange, exactly once.

        Raises:
            SessionNotFound: If the exchange does not exist
            PromptAlreadyRecorded: If the prompt was already set
        """
        result = self.session.execute(
            update(Exchange)
            .where(Exchange.session_id == session_id, Exchange.user_prompt.is_(None))
            .values(user_prompt=prompt, updated_at=_utc_now())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            if self.get_exchange_by_session_id(session_id) is None:
                raise SessionNotFound(session_id)
            raise PromptAlreadyRecorded(session_id)

    def append_turn(
        self,
        root: RootSession,
        prompt: str,
        ai_response: str,
        resumption_token: str,
        cost_units: Optional[float] = None,
    ) -> Exchange:
        """
        Record a completed prompt/response turn.

        The prompt is written to the current leaf (or to the root when the
        conversation has no exchanges yet) and the new exchange is appended
        after it, all within the caller's transaction.

        Returns:
            The new leaf Exchange
        """
        leaf = self.find_leaf(root.id)
        if leaf is None:
            self.record_first_prompt(root.session_id, prompt)
            previous_session_id = None
        else:
            self.record_next_prompt(leaf.session_id, prompt)
            previous_session_id = leaf.session_id

        return self.append_exchange(
            root.id,
            previous_session_id,
            ai_response,
            resumption_token=resumption_token,
            cost_units=cost_units,
        )

    def update_summary(self, session_id: str, summary: str) -> Exchange:
        """
        Set the short summary of an exchange.

        Raises:
            SessionNotFound: If the exchange does not exist
        """
        exchange = self.get_exchange_by_session_id(session_id)
        if exchange is None:
            raise SessionNotFound(session_id)
        exchange.summary = summary
        self.session.flush()
        return exchange

    def find_leaf(self, root_id: int) -> Optional[Exchange]:
        """
        Find the newest exchange under a root.

        Relies on monotonic insertion order rather than walking the chain.

        Args:
            root_id: Storage identifier of the root session

        Returns:
            Leaf Exchange or None if the root has no exchanges
        """
        return (
            self.session.query(Exchange)
            .filter(Exchange.root_parent_id == root_id)
            .order_by(Exchange.id.desc())
            .first()
        )

    def load_chain(self, root_id: int) -> List[Exchange]:
        """
        Load every exchange under a root in insertion order.

        Args:
            root_id: Storage identifier of the root session

        Returns:
            Ordered list of exchanges
        """
        return (
            self.session.query(Exchange)
            .filter(Exchange.root_parent_id == root_id)
            .order_by(Exchange.id)
            .all()
        )

    def count_exchanges(self, root_id: int) -> int:
        """
        Count the exchanges under a root.

        This is the canonical message count shown to users.
        """
        return (
            self.session.query(func.count(Exchange.id))
            .filter(Exchange.root_parent_id == root_id)
            .scalar()
            or 0
        )

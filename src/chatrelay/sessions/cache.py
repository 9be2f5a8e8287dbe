"""In-process read-through cache for root sessions and their exchange chains."""

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Union

from chatrelay.db.connection import SessionFactory, SessionLocal, unit_of_work
from chatrelay.db.repositories.session_tree import SessionTreeRepository
from chatrelay.models.records import (
    ConversationChain,
    ExchangeRecord,
    RootSessionRecord,
)

logger = logging.getLogger(__name__)


@dataclass
class CacheStats:
    """Counters for the session cache."""

    hits: int = 0
    misses: int = 0
    invalidations: int = 0
    roots: int = 0
    chains: int = 0


class SessionCache:
    """Read-through, write-invalidate cache over the session tree repository.

    The cache never originates data: every entry is an immutable record
    loaded from the store, and callers drop entries with ``invalidate`` after
    any mutation through this process. Other processes' writes are not
    observed; the store stays the ground truth on cold start.
    """

    def __init__(self, session_factory: SessionFactory = SessionLocal):
        self.session_factory = session_factory
        self._lock = threading.RLock()
        self._by_session_id: dict[str, RootSessionRecord] = {}
        self._by_id: dict[int, RootSessionRecord] = {}
        self._chains: dict[int, ConversationChain] = {}
        self._stats = CacheStats()
        # Bumped by every invalidation; loads started before a bump are not stored
        self._generation = 0

    def get_by_session_id(self, session_id: str) -> Optional[RootSessionRecord]:
        """Look up a root session by its business identifier."""
        with self._lock:
            cached = self._by_session_id.get(session_id)
            if cached is not None:
                self._stats.hits += 1
                return cached
            self._stats.misses += 1
            generation = self._generation

        with unit_of_work(self.session_factory, "get_root_by_session_id") as session:
            row = SessionTreeRepository(session).get_root_by_session_id(session_id)
            record = RootSessionRecord.from_model(row) if row else None

        if record is not None:
            self._store_root(record, generation)
        return record

    def get_by_numeric_id(self, id: int) -> Optional[RootSessionRecord]:
        """Look up a root session by its storage identifier."""
        with self._lock:
            cached = self._by_id.get(id)
            if cached is not None:
                self._stats.hits += 1
                return cached
            self._stats.misses += 1
            generation = self._generation

        with unit_of_work(self.session_factory, "get_root_by_id") as session:
            row = SessionTreeRepository(session).get_root_by_id(id)
            record = RootSessionRecord.from_model(row) if row else None

        if record is not None:
            self._store_root(record, generation)
        return record

    def get_chain(self, root_id: int) -> ConversationChain:
        """Get every exchange under a root, in order."""
        with self._lock:
            cached = self._chains.get(root_id)
            if cached is not None:
                self._stats.hits += 1
                return cached
            self._stats.misses += 1
            generation = self._generation

        with unit_of_work(self.session_factory, "load_chain") as session:
            rows = SessionTreeRepository(session).load_chain(root_id)
            records = [ExchangeRecord.from_model(row) for row in rows]

        chain = ConversationChain.from_records(root_id, records)
        with self._lock:
            if generation == self._generation:
                self._chains[root_id] = chain
        return chain

    def invalidate(self, identifier: Union[str, int]) -> None:
        """
        Drop a root session and its chain from the cache.

        Args:
            identifier: Business identifier (str) or storage identifier (int)
                of the root session
        """
        with self._lock:
            if isinstance(identifier, int):
                record = self._by_id.pop(identifier, None)
                root_id: Optional[int] = identifier
            else:
                record = self._by_session_id.pop(identifier, None)
                root_id = record.id if record else None

            if record is not None:
                self._by_session_id.pop(record.session_id, None)
                self._by_id.pop(record.id, None)
            if root_id is not None:
                self._chains.pop(root_id, None)
            self._stats.invalidations += 1
            self._generation += 1

        logger.debug(f"Session cache invalidated: {identifier}")

    def clear(self) -> None:
        """Drop every cached entry."""
        with self._lock:
            self._by_session_id.clear()
            self._by_id.clear()
            self._chains.clear()
            self._generation += 1

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                invalidations=self._stats.invalidations,
                roots=len(self._by_id),
                chains=len(self._chains),
            )

    def _store_root(self, record: RootSessionRecord, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._by_session_id[record.session_id] = record
            self._by_id[record.id] = record

"""
Storage-independent session records.

Immutable snapshots of persisted rows, safe to cache and to hand across
threads after the SQLAlchemy session that loaded them is closed. The
ConversationChain keeps exchanges in an arena keyed by their business
identifier so a lineage can be rebuilt, validated, and serialized without
any reference to storage-internal keys.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

from chatrelay.models.db import ChannelBinding, Exchange, RootSession


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class RootSessionRecord:
    """Snapshot of a RootSession row."""

    id: int
    session_id: str
    working_directory: str
    system_user: str
    user_prompt: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: RootSession) -> "RootSessionRecord":
        return cls(
            id=row.id,
            session_id=row.session_id,
            working_directory=row.working_directory,
            system_user=row.system_user,
            user_prompt=row.user_prompt,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class ExchangeRecord:
    """Snapshot of an Exchange row."""

    id: int
    session_id: str
    root_parent_id: int
    previous_session_id: Optional[str] = None
    ai_response: Optional[str] = None
    user_prompt: Optional[str] = None
    summary: Optional[str] = None
    cost_units: Optional[float] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, row: Exchange) -> "ExchangeRecord":
        return cls(
            id=row.id,
            session_id=row.session_id,
            root_parent_id=row.root_parent_id,
            previous_session_id=row.previous_session_id,
            ai_response=row.ai_response,
            user_prompt=row.user_prompt,
            summary=row.summary,
            cost_units=row.cost_units,
            created_at=row.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExchangeRecord":
        values = dict(data)
        values["created_at"] = _parse_iso(values.get("created_at"))
        return cls(**values)


@dataclass(frozen=True)
class ChannelBindingRecord:
    """Snapshot of a ChannelBinding row."""

    channel_id: str
    active_session_id: Optional[int]
    active_exchange_id: Optional[int]
    permission_mode: str

    @classmethod
    def from_model(cls, row: ChannelBinding) -> "ChannelBindingRecord":
        return cls(
            channel_id=row.channel_id,
            active_session_id=row.active_session_id,
            active_exchange_id=row.active_exchange_id,
            permission_mode=row.permission_mode,
        )


class ChainIntegrityError(ValueError):
    """Raised when exchanges do not form a single linked list under one root."""


@dataclass
class ConversationChain:
    """
    Arena of exchanges for one root session.

    Exchanges are keyed by their business identifier; each back-reference is
    a key into the same arena. Insertion order is preserved so that the
    newest exchange is always the leaf.
    """

    root_id: int
    _arena: dict[str, ExchangeRecord] = field(default_factory=dict)

    @classmethod
    def from_records(
        cls, root_id: int, records: list[ExchangeRecord]
    ) -> "ConversationChain":
        chain = cls(root_id=root_id)
        for record in records:
            chain.add(record)
        return chain

    def add(self, record: ExchangeRecord) -> None:
        """
        Append an exchange to the arena.

        Raises:
            ChainIntegrityError: If the exchange belongs to another root, is
                already present, or does not extend the current leaf
        """
        if record.root_parent_id != self.root_id:
            raise ChainIntegrityError(
                f"Exchange {record.session_id} belongs to root "
                f"{record.root_parent_id}, not {self.root_id}"
            )
        if record.session_id in self._arena:
            raise ChainIntegrityError(f"Duplicate exchange {record.session_id}")

        leaf = self.leaf
        expected_previous = leaf.session_id if leaf else None
        if record.previous_session_id != expected_previous:
            raise ChainIntegrityError(
                f"Exchange {record.session_id} points at "
                f"{record.previous_session_id!r}, expected {expected_previous!r}"
            )
        self._arena[record.session_id] = record

    def get(self, session_id: str) -> Optional[ExchangeRecord]:
        return self._arena.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._arena

    def __len__(self) -> int:
        return len(self._arena)

    def __iter__(self) -> Iterator[ExchangeRecord]:
        return iter(self.ordered())

    @property
    def leaf(self) -> Optional[ExchangeRecord]:
        """Most recently appended exchange, or None for an empty chain."""
        if not self._arena:
            return None
        return next(reversed(self._arena.values()))

    def walk_back(self, session_id: str) -> list[ExchangeRecord]:
        """
        Follow back-references from an exchange to the first one.

        Returns:
            Exchanges from ``session_id`` back to the head, newest first

        Raises:
            ChainIntegrityError: On a dangling reference or a cycle
        """
        visited: set[str] = set()
        result = []
        current: Optional[str] = session_id
        while current is not None:
            if current in visited:
                raise ChainIntegrityError(f"Cycle detected at {current}")
            record = self._arena.get(current)
            if record is None:
                raise ChainIntegrityError(f"Dangling reference to {current}")
            visited.add(current)
            result.append(record)
            current = record.previous_session_id
        return result

    def ordered(self) -> list[ExchangeRecord]:
        """Exchanges from first to leaf, reconstructed from back-references."""
        leaf = self.leaf
        if leaf is None:
            return []
        return list(reversed(self.walk_back(leaf.session_id)))

    def transcript(self, root_prompt: Optional[str] = None) -> str:
        """Render the full conversation as plain text."""
        lines = []
        if root_prompt:
            lines.append(f"User: {root_prompt}")
        for record in self.ordered():
            if record.ai_response:
                lines.append(f"Assistant: {record.ai_response}")
            if record.user_prompt:
                lines.append(f"User: {record.user_prompt}")
        return "\n\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """Serialize the chain without storage-internal ordering keys."""
        return {
            "root_id": self.root_id,
            "exchanges": [record.to_dict() for record in self.ordered()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConversationChain":
        records = [ExchangeRecord.from_dict(item) for item in data["exchanges"]]
        return cls.from_records(data["root_id"], records)

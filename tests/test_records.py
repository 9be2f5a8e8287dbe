"""
Tests for session records and the ConversationChain arena.
"""

from datetime import datetime, timezone

import pytest

from chatrelay.models.records import (
    ChainIntegrityError,
    ConversationChain,
    ExchangeRecord,
)


def _record(id: int, token: str, previous=None, root_id: int = 1, **kwargs):
    return ExchangeRecord(
        id=id,
        session_id=token,
        root_parent_id=root_id,
        previous_session_id=previous,
        **kwargs,
    )


@pytest.fixture
def chain() -> ConversationChain:
    return ConversationChain.from_records(
        1,
        [
            _record(1, "tok-1", ai_response="hi", user_prompt="how are you?"),
            _record(2, "tok-2", "tok-1", ai_response="fine", user_prompt="bye"),
            _record(3, "tok-3", "tok-2", ai_response="goodbye"),
        ],
    )


class TestConversationChain:
    """Tests for building and traversing the arena."""

    def test_leaf_is_latest(self, chain: ConversationChain):
        assert chain.leaf.session_id == "tok-3"
        assert len(chain) == 3
        assert "tok-2" in chain

    def test_empty_chain(self):
        chain = ConversationChain(root_id=1)

        assert chain.leaf is None
        assert chain.ordered() == []
        assert len(chain) == 0

    def test_walk_back_follows_references(self, chain: ConversationChain):
        walked = chain.walk_back("tok-3")

        assert [r.session_id for r in walked] == ["tok-3", "tok-2", "tok-1"]

    def test_ordered_is_oldest_first(self, chain: ConversationChain):
        assert [r.session_id for r in chain.ordered()] == ["tok-1", "tok-2", "tok-3"]
        assert [r.session_id for r in chain] == ["tok-1", "tok-2", "tok-3"]

    def test_rejects_exchange_of_other_root(self, chain: ConversationChain):
        with pytest.raises(ChainIntegrityError):
            chain.add(_record(4, "tok-4", "tok-3", root_id=2))

    def test_rejects_branching(self, chain: ConversationChain):
        with pytest.raises(ChainIntegrityError):
            chain.add(_record(4, "tok-4", "tok-1"))

    def test_rejects_duplicates(self, chain: ConversationChain):
        with pytest.raises(ChainIntegrityError):
            chain.add(_record(4, "tok-2", "tok-3"))

    def test_walk_back_unknown_identifier(self, chain: ConversationChain):
        with pytest.raises(ChainIntegrityError):
            chain.walk_back("missing")

    def test_transcript(self, chain: ConversationChain):
        transcript = chain.transcript("hello")

        assert transcript.split("\n\n") == [
            "User: hello",
            "Assistant: hi",
            "User: how are you?",
            "Assistant: fine",
            "User: bye",
            "Assistant: goodbye",
        ]

    def test_serialization_uses_business_identifiers(self, chain: ConversationChain):
        data = chain.to_dict()

        assert data["root_id"] == 1
        assert [e["previous_session_id"] for e in data["exchanges"]] == [
            None,
            "tok-1",
            "tok-2",
        ]

        restored = ConversationChain.from_dict(data)
        assert restored.leaf == chain.leaf
        assert restored.ordered() == chain.ordered()


class TestExchangeRecord:
    """Tests for ExchangeRecord conversion."""

    def test_dict_conversion_keeps_timestamp(self):
        created = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        record = _record(1, "tok-1", created_at=created, cost_units=0.5)

        data = record.to_dict()

        assert data["created_at"] == "2026-01-02T03:04:05+00:00"
        assert ExchangeRecord.from_dict(data) == record

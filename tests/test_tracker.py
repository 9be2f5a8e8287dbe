"""
Tests for ChannelStateTracker.
"""

import pytest

from chatrelay.db.repositories import SessionTreeRepository
from chatrelay.exceptions import InvalidPermissionMode, SessionNotFound
from chatrelay.models.db import PermissionMode
from chatrelay.sessions.tracker import ChannelStateTracker


@pytest.fixture
def tracker(session_factory) -> ChannelStateTracker:
    return ChannelStateTracker(session_factory=session_factory)


def _append_turn(session_factory, root_id: int, prompt: str, token: str) -> int:
    with session_factory() as session:
        repo = SessionTreeRepository(session)
        exchange = repo.append_turn(
            repo.get_root_by_id(root_id), prompt, f"reply to {prompt}", token
        )
        session.commit()
        return exchange.id


class TestResolveOrCreate:
    """Tests for resolving a channel's active conversation."""

    def test_creates_root_on_first_use(self, tracker):
        root, leaf = tracker.resolve_or_create("C1", "alice", "/work")

        assert leaf is None
        assert root.working_directory == "/work"
        assert root.system_user == "alice"
        assert root.user_prompt is None
        assert tracker.get_binding("C1").active_session_id == root.id

    def test_reuses_bound_root(self, tracker):
        first, _ = tracker.resolve_or_create("C1", "alice", "/work")
        second, _ = tracker.resolve_or_create("C1", "bob", "/elsewhere")

        assert second.id == first.id

    def test_returns_newest_exchange(self, tracker, session_factory):
        root, _ = tracker.resolve_or_create("C1", "alice", "/work")
        _append_turn(session_factory, root.id, "hello", "tok-1")
        _append_turn(session_factory, root.id, "again", "tok-2")

        _, leaf = tracker.resolve_or_create("C1", "alice", "/work")

        assert leaf.session_id == "tok-2"

    def test_deleted_root_starts_new_session(self, tracker, session_factory):
        root, _ = tracker.resolve_or_create("C1", "alice", "/work")
        with session_factory() as session:
            SessionTreeRepository(session).delete_root(root.session_id)
            session.commit()
        tracker.cache.invalidate(root.id)

        new_root, leaf = tracker.resolve_or_create("C1", "alice", "/work")

        assert new_root.session_id != root.session_id
        assert leaf is None

    def test_channels_are_independent(self, tracker):
        first, _ = tracker.resolve_or_create("C1", "alice", "/work")
        second, _ = tracker.resolve_or_create("C2", "alice", "/work")

        assert first.id != second.id


class TestSwitchTo:
    """Tests for rebinding a channel to an existing conversation."""

    def test_switch_binds_leaf_of_root(self, tracker, session_factory):
        root = tracker.start_new("C1", "alice", "/work")
        _append_turn(session_factory, root.id, "one", "tok-1")
        _append_turn(session_factory, root.id, "two", "tok-2")
        leaf_id = _append_turn(session_factory, root.id, "three", "tok-3")

        switched_root, leaf = tracker.switch_to("C2", root.session_id)

        assert switched_root.id == root.id
        assert leaf.session_id == "tok-3"
        binding = tracker.get_binding("C2")
        assert binding.active_session_id == root.id
        assert binding.active_exchange_id == leaf_id

    def test_switch_by_exchange_identifier(self, tracker, session_factory):
        root = tracker.start_new("C1", "alice", "/work")
        _append_turn(session_factory, root.id, "one", "tok-1")
        _append_turn(session_factory, root.id, "two", "tok-2")

        switched_root, leaf = tracker.switch_to("C2", "tok-1")

        assert switched_root.id == root.id
        assert leaf.session_id == "tok-2"

    def test_switch_to_root_without_exchanges(self, tracker):
        root = tracker.start_new("C1", "alice", "/work")
        tracker.start_new("C2", "alice", "/work")

        switched_root, leaf = tracker.switch_to("C2", root.session_id)

        assert switched_root.id == root.id
        assert leaf is None
        assert tracker.get_binding("C2").active_exchange_id is None

    def test_unknown_target_leaves_binding(self, tracker):
        root = tracker.start_new("C1", "alice", "/work")
        before = tracker.get_binding("C1")

        with pytest.raises(SessionNotFound):
            tracker.switch_to("C1", "does-not-exist")

        assert tracker.get_binding("C1") == before
        assert before.active_session_id == root.id


class TestModes:
    """Tests for the channel permission mode."""

    def test_default_mode(self, tracker):
        assert tracker.get_mode("C1") == PermissionMode.DEFAULT

    def test_set_mode(self, tracker):
        assert tracker.set_mode("C1", "plan") == PermissionMode.PLAN
        assert tracker.get_mode("C1") == PermissionMode.PLAN

    def test_mode_survives_session_switch(self, tracker):
        tracker.set_mode("C1", "acceptEdits")
        tracker.start_new("C1", "alice", "/work")

        assert tracker.get_mode("C1") == PermissionMode.ACCEPT_EDITS

    def test_invalid_mode(self, tracker):
        with pytest.raises(InvalidPermissionMode):
            tracker.set_mode("C1", "yolo")

        assert tracker.get_mode("C1") == PermissionMode.DEFAULT

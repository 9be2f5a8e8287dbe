"""
Tests for the MessageRelay service.

Uses the scripted FakeEngine from conftest, which issues resumption tokens
tok-1, tok-2, ... and echoes each prompt.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from chatrelay.db.connection import unit_of_work
from chatrelay.exceptions import EngineError, SessionNotFound
from chatrelay.models.db import ChannelProcessingState, PermissionMode
from chatrelay.queue.channel_queue import ChannelMessageQueue
from chatrelay.queue.combiner import MESSAGE_DELIMITER
from chatrelay.services.relay import format_failure, format_reply


class TestFormatting:
    """Tests for reply rendering."""

    def test_format_reply_footer(self):
        reply = format_reply("Done.", PermissionMode.PLAN, "tok-9", "/srv/app")

        assert reply == (
            "Done.\n\n_Mode: `plan`, Session: `tok-9`, Working Dir: `/srv/app`_"
        )

    def test_format_failure(self):
        assert format_failure(EngineError("boom")) == "❌ Engine request failed: boom"
        assert format_failure(SessionNotFound("abc")) == "❌ Session abc not found"


class TestHandleIncoming:
    """Tests for relaying messages to the engine."""

    def test_first_message_starts_conversation(self, relay, fake_engine):
        reply = relay.handle_incoming("C1", "alice", "hello")

        assert reply == (
            "echo: hello\n\n_Mode: `default`, Session: `tok-1`, "
            "Working Dir: `/work/project`_"
        )
        call = fake_engine.calls[0]
        assert call.resumption_token is None
        assert call.working_context == "/work/project"
        assert call.mode == PermissionMode.DEFAULT
        assert call.timeout == 5.0

    def test_follow_up_resumes_from_leaf(self, relay, fake_engine):
        relay.handle_incoming("C1", "alice", "hello")
        relay.handle_incoming("C1", "alice", "again")

        assert [c.resumption_token for c in fake_engine.calls] == [None, "tok-1"]

        info = relay.session_info("C1")
        assert info.leaf.session_id == "tok-2"
        assert info.message_count == 2

        root, chain = relay.get_chain(info.root.session_id)
        assert root.user_prompt == "hello"
        assert [e.session_id for e in chain] == ["tok-1", "tok-2"]
        assert chain.get("tok-1").user_prompt == "again"
        assert chain.leaf.user_prompt is None
        assert chain.leaf.cost_units == 0.01

    def test_messages_during_exchange_are_combined(self, relay, fake_engine):
        queued_replies = []

        def send_more(call):
            queued_replies.append(relay.handle_incoming("C1", "bob", "B"))
            queued_replies.append(relay.handle_incoming("C1", "carol", "C"))

        fake_engine.on_invoke = send_more

        reply = relay.handle_incoming("C1", "alice", "A")

        assert queued_replies == [None, None]
        assert fake_engine.prompts == ["A", f"B{MESSAGE_DELIMITER}C"]
        assert [c.resumption_token for c in fake_engine.calls] == [None, "tok-1"]
        assert reply.count("_Mode:") == 2
        assert "Session: `tok-2`" in reply

        info = relay.session_info("C1")
        assert info.queued_messages == 0
        assert info.is_processing is False

    def test_follow_up_exchange_restarts_stale_clock(
        self, relay, fake_engine, session_factory
    ):
        reaped = []
        late_replies = []

        def during_second_exchange(call):
            with unit_of_work(session_factory, "reap") as session:
                queue = ChannelMessageQueue(session)
                reaped.append(queue.reap_stale(timedelta(minutes=5)))
            late_replies.append(relay.handle_incoming("C1", "dave", "D"))

        def during_first_exchange(call):
            # The first exchange has been running far longer than the timeout
            with session_factory() as session:
                session.execute(
                    update(ChannelProcessingState)
                    .where(ChannelProcessingState.channel_id == "C1")
                    .values(
                        processing_started_at=datetime.now(timezone.utc)
                        - timedelta(hours=1)
                    )
                )
                session.commit()
            late_replies.append(relay.handle_incoming("C1", "bob", "B"))
            fake_engine.on_invoke = during_second_exchange

        fake_engine.on_invoke = during_first_exchange

        relay.handle_incoming("C1", "alice", "A")

        assert reaped == [0]
        assert late_replies == [None, None]
        assert fake_engine.prompts == ["A", "B", "D"]
        assert relay.session_info("C1").is_processing is False

    def test_message_for_busy_channel_is_queued(self, relay, fake_engine, session_factory):
        with unit_of_work(session_factory, "begin") as session:
            ChannelMessageQueue(session).begin_processing("C1", "other-worker")

        assert relay.handle_incoming("C1", "alice", "hello") is None
        assert fake_engine.calls == []

        info = relay.session_info("C1")
        assert info.is_processing is True
        assert info.queued_messages == 1

    def test_engine_failure_is_reported(self, relay, fake_engine):
        fake_engine.fail_with = EngineError("boom", exit_code=2)

        reply = relay.handle_incoming("C1", "alice", "hello")

        assert reply == "❌ Engine request failed: boom (exit code 2)"
        info = relay.session_info("C1")
        assert info.is_processing is False
        assert info.message_count == 0
        assert info.root.user_prompt is None

    def test_recovers_after_engine_failure(self, relay, fake_engine):
        fake_engine.fail_with = EngineError("boom")
        relay.handle_incoming("C1", "alice", "hello")
        failed_root = relay.session_info("C1").root

        fake_engine.fail_with = None
        reply = relay.handle_incoming("C1", "alice", "hello again")

        assert reply.startswith("echo: hello again")
        info = relay.session_info("C1")
        assert info.root.id == failed_root.id
        assert info.root.user_prompt == "hello again"
        assert fake_engine.calls[-1].resumption_token is None

    def test_reused_resumption_token_is_rejected(self, relay, fake_engine):
        fake_engine.fixed_token = "same-session"
        relay.handle_incoming("C1", "alice", "hello")

        reply = relay.handle_incoming("C1", "alice", "again")

        assert reply == (
            "❌ Engine request failed: Engine reused resumption token same-session"
        )
        info = relay.session_info("C1")
        assert info.message_count == 1
        assert info.leaf.session_id == "same-session"
        assert info.leaf.user_prompt is None
        assert info.is_processing is False

    def test_mode_is_passed_to_engine(self, relay, fake_engine):
        relay.set_mode("C1", "plan")

        reply = relay.handle_incoming("C1", "alice", "hello")

        assert fake_engine.calls[0].mode == PermissionMode.PLAN
        assert "_Mode: `plan`" in reply


class TestSessionManagement:
    """Tests for the session-management operations."""

    def test_switch_round_trip(self, relay, fake_engine):
        for text in ("one", "two", "three"):
            relay.handle_incoming("C1", "alice", text)
        first_root = relay.session_info("C1").root

        new_root = relay.start_new_session("C1", "alice")
        relay.handle_incoming("C1", "alice", "fresh")
        assert fake_engine.calls[-1].resumption_token is None
        assert relay.session_info("C1").root.id == new_root.id

        root, leaf = relay.switch_to("C1", first_root.session_id)
        assert root.id == first_root.id
        assert leaf.session_id == "tok-3"

        relay.handle_incoming("C1", "alice", "back again")
        assert fake_engine.calls[-1].resumption_token == "tok-3"

    def test_channels_sharing_a_root_continue_one_chain(self, relay, fake_engine):
        relay.handle_incoming("C1", "alice", "one")
        root = relay.session_info("C1").root
        relay.switch_to("C2", root.session_id)

        relay.handle_incoming("C2", "bob", "two")
        relay.handle_incoming("C1", "alice", "three")

        assert [c.resumption_token for c in fake_engine.calls] == [None, "tok-1", "tok-2"]
        _, chain = relay.get_chain(root.session_id)
        assert len(chain) == 3

    def test_start_new_session_uses_given_directory(self, relay):
        root = relay.start_new_session("C1", "alice", "/srv/other")

        assert root.working_directory == "/srv/other"
        assert relay.session_info("C1").root.id == root.id

    def test_switch_to_unknown_session(self, relay):
        with pytest.raises(SessionNotFound):
            relay.switch_to("C1", "missing")

    def test_session_info_for_unused_channel(self, relay):
        info = relay.session_info("never-used")

        assert info.root is None
        assert info.leaf is None
        assert info.mode == PermissionMode.DEFAULT
        assert info.message_count == 0
        assert info.queued_messages == 0
        assert info.is_processing is False

    def test_listings(self, relay):
        relay.handle_incoming("C1", "alice", "one")
        relay.handle_incoming("C1", "alice", "two")
        relay.start_new_session("C2", "bob", "/srv/other")

        recent = relay.list_recent()
        assert {s.working_directory for s in recent} == {"/work/project", "/srv/other"}
        counts = {s.working_directory: s.message_count for s in recent}
        assert counts == {"/work/project": 2, "/srv/other": 0}

        assert relay.list_distinct_contexts() == ["/srv/other", "/work/project"]

        by_context = relay.list_by_context("/srv/other")
        assert [s.system_user for s in by_context] == ["bob"]
        assert len(relay.list_recent(limit=1)) == 1

    def test_delete_session(self, relay, fake_engine):
        relay.handle_incoming("C1", "alice", "one")
        root = relay.session_info("C1").root
        relay.get_chain(root.session_id)

        relay.delete_session(root.session_id)

        with pytest.raises(SessionNotFound):
            relay.get_chain(root.session_id)
        assert relay.session_info("C1").root is None

        relay.handle_incoming("C1", "alice", "two")
        assert fake_engine.calls[-1].resumption_token is None
        assert relay.session_info("C1").root.session_id != root.session_id

    def test_delete_unknown_session(self, relay):
        with pytest.raises(SessionNotFound):
            relay.delete_session("missing")
